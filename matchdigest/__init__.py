"""Match digest relay: live Footium match streams turned into LLM-written digests."""

__version__ = "0.1.0"

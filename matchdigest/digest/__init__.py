"""Per-fixture digest workflow: fact accumulation, state machine, response schema."""

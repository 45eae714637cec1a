"""
Run the relay with uvicorn.

Usage:
    python -m matchdigest --port 5000
"""

import argparse

import uvicorn

from matchdigest.config import get_settings


def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Match digest relay server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=settings.PORT)
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    args = parser.parse_args()

    uvicorn.run("matchdigest.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()

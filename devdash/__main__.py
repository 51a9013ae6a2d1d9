"""
Local API server for development.

Usage:
    python -m devdash [--host 127.0.0.1] [--port 8000] [--reload]
"""

import argparse

import uvicorn


def main() -> None:
    parser = argparse.ArgumentParser(description="devdash API server")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port to serve on (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Reload on source changes")
    args = parser.parse_args()

    uvicorn.run("devdash.app:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()

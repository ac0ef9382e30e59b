#!/usr/bin/env python3
"""
Deal Flow Engine - API Server

Run this script to start the deal pipeline API.

Usage:
    python serve.py [--port PORT] [--host HOST] [--reload]

Example:
    python serve.py --port 8080
"""

import argparse

import uvicorn


def main():
    parser = argparse.ArgumentParser(
        description="Deal Flow Engine - API Server"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8000,
        help="Port to listen on (default: 8000)"
    )
    parser.add_argument(
        "--host", "-H",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Reload on code changes"
    )

    args = parser.parse_args()

    uvicorn.run("web.app:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()

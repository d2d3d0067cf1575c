#!/usr/bin/env python3
"""Run the QuestBoard API server.

Usage:
    python run.py [--host HOST] [--port PORT] [--reload] [--workers N] [--migrate]

Examples:
    python run.py                      # Run with defaults (localhost:8000)
    python run.py --port 8080          # Run on port 8080
    python run.py --reload             # Run with auto-reload for development
    python run.py --migrate            # Apply database migrations, then serve
"""

import argparse
import sys
from pathlib import Path


def migrate() -> None:
    """Upgrade QUESTBOARD_DATABASE_URL to the latest schema revision."""
    from alembic import command
    from alembic.config import Config

    config = Config(str(Path(__file__).resolve().parent / "alembic.ini"))
    command.upgrade(config, "head")
    print("Database schema is up to date")


def main():
    parser = argparse.ArgumentParser(
        description="Run the QuestBoard API server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py                      Run with defaults (localhost:8000)
  python run.py --port 8080          Run on port 8080
  python run.py --host 0.0.0.0       Listen on all interfaces
  python run.py --reload             Enable auto-reload (development)
  python run.py --workers 4          Run with 4 worker processes
  python run.py --migrate            Upgrade the schema to head before serving
        """,
    )

    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload on code changes (development mode)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes (default: 1)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        default="info",
        help="Uvicorn logging level (default: info)",
    )
    parser.add_argument(
        "--migrate",
        action="store_true",
        help="Run alembic migrations to head before starting",
    )

    args = parser.parse_args()

    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn is not installed.")
        print("Install it with: pip install uvicorn[standard]")
        sys.exit(1)

    if args.migrate:
        migrate()

    print(f"QuestBoard starting at http://{args.host}:{args.port} (docs at /docs)")

    uvicorn.run(
        "questboard.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers if not args.reload else 1,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()

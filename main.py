#!/usr/bin/env python3
"""Main entry point for the StanceStream debate service."""

import logging
import os
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from config.settings import get_default_config


def setup_logging(level: str = "INFO"):
    """Configure logging for the web server."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    # Suppress noisy third-party loggers
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def print_usage():
    """Print usage information for local development."""
    print("StanceStream Debate Service")
    print("=" * 40)
    print("Start the API + WebSocket server:")
    print("   python main.py --web")
    print()
    print("Environment overrides:")
    print("   REDIS_URL, OPENAI_API_KEY, STANCESTREAM_ENV, LOG_LEVEL, ALLOWED_ORIGINS")
    print("   STANCESTREAM_CONFIG (path to the JSON config file)")
    print()


def start_web_server():
    """Start the FastAPI web server."""
    config = get_default_config()
    setup_logging(config.system.log_level)

    import uvicorn

    from web.api import create_app

    port = int(os.environ.get("PORT", 3001))

    print("Starting StanceStream server...")
    print(f"API Documentation: http://localhost:{port}/docs")
    print(f"WebSocket: ws://localhost:{port}/ws")

    uvicorn.run(create_app(config), host="0.0.0.0", port=port, log_level="info", access_log=True)


def main():
    """Main entry point."""
    is_production = any([
        "PORT" in os.environ,
        os.environ.get("STANCESTREAM_ENV") == "production",
    ])

    if is_production or "--web" in sys.argv:
        start_web_server()
    else:
        print_usage()
        print("Tip: Use 'python main.py --web' to start the server")


if __name__ == "__main__":
    main()

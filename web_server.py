#!/usr/bin/env python3
"""Web server entry point for the StanceStream debate service."""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from main import start_web_server


if __name__ == "__main__":
    start_web_server()

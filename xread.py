#!/usr/bin/env python3
"""
x_reader - Main Entry Point

Reads one JSON request from stdin and writes one JSON envelope to stdout.

Usage:
    echo '{"count": 5}' | python xread.py trending
    echo '{"query": "python"}' | python xread.py search
    python xread.py status   # Auth marker and profile lock state
    python xread.py --help   # Show all options
"""

import sys
import os

# Add the project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from x_reader.cli import main

if __name__ == "__main__":
    main()

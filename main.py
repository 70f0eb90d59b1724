"""VeriMan entry point

usage:
    python main.py --config config.json
    python main.py --config config.json --format json
"""
import sys

from veriman.cli import main

if __name__ == "__main__":
    sys.exit(main())

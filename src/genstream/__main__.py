#!/usr/bin/env python3
"""
genstream - Main entry point for python -m genstream
"""

import sys


def main():
    """Main entry point for python -m genstream"""
    try:
        from genstream.cli import main as cli_main
        cli_main()
    except KeyboardInterrupt:
        print("\ngenstream stopped by user", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()

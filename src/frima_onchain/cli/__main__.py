"""CLI entry point for frima_onchain.cli module.

Enables execution via: python -m frima_onchain.cli
"""

from frima_onchain.cli.scan_events import main

if __name__ == "__main__":
    raise SystemExit(main())

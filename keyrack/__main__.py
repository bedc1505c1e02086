"""
keyrack Entry Point — Run with: python -m keyrack

Also how the client spawns a session daemon:
    python -m keyrack daemon --socket <path>
"""

import sys


def main():
    """Main entry point for keyrack."""
    from keyrack.cli import main as cli_main
    return cli_main()


if __name__ == "__main__":
    sys.exit(main() or 0)

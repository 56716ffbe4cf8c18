"""Entry point for running the bookmark client CLI."""
import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())

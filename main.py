"""Entry point for running the objfacts extractor via ``python main.py``."""

import sys

from objfacts.cli import main

if __name__ == "__main__":
    sys.exit(main())

"""Allow ``python -m objfacts``."""

import sys

from objfacts.cli import main

sys.exit(main())

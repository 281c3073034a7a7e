"""Entry point for python -m stowage."""

import sys

from stowage.cli import main

sys.exit(main())

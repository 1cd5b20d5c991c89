"""Allow ``python -m xbridge``."""

import sys

from .cli import main


sys.exit(main())

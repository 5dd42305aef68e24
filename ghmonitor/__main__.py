"""Allow ``python -m ghmonitor``."""

import sys

from .cli import main


sys.exit(main())

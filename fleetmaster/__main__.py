"""Allow ``python -m fleetmaster``."""

import sys

from .cli import main


sys.exit(main())

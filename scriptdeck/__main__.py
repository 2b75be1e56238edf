"""Allow running as python -m scriptdeck."""

import sys

from scriptdeck.cli import main

sys.exit(main())

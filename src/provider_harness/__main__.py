"""Allow running the harness with ``python -m provider_harness``."""

import sys

from .cli import main

sys.exit(main())

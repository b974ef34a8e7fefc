"""
Entry point.

    python -m basesim
"""

import sys

from basesim.cli import main

if __name__ == "__main__":
    sys.exit(main())

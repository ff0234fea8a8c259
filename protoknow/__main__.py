"""Allows ``python -m protoknow``."""

import sys

from protoknow.main import main

if __name__ == "__main__":
    sys.exit(main())

"""Allow running bulkload as a module: python -m bulkload --index my-index."""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())

"""Allow ``python -m llamabuild``."""

import sys

from llamabuild.cli import main

if __name__ == "__main__":
    sys.exit(main())

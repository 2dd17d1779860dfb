"""Allow `python -m streamgate`."""

import sys

from streamgate.cli.serve import main

if __name__ == "__main__":
    sys.exit(main())

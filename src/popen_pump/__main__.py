"""popen-pump entry point.

Usage: python -m popen_pump [options] -- command args...
"""

import sys

from .app import main

if __name__ == "__main__":
    sys.exit(main())

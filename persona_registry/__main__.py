import sys

from .rpc.server import main

if __name__ == "__main__":
    sys.exit(main())

import sys

from tagflow.cli import main

if __name__ == "__main__":
    sys.exit(main())

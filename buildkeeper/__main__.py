import sys

from buildkeeper.cli.build_manager_cli import main

if __name__ == "__main__":
    sys.exit(main())

"""Allow ``python -m stitchgrid``."""

from stitchgrid.cli import main

if __name__ == "__main__":
    main()

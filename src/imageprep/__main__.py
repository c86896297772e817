"""Allow ``python -m imageprep``."""

from imageprep.cli import main

if __name__ == "__main__":
    main()

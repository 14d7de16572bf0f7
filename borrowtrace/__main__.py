"""Allow ``python -m borrowtrace``."""

from borrowtrace.cli import main

main()

"""Allow running cmdgate as ``python -m cmdgate``."""

from cmdgate.cli.app import main

main()

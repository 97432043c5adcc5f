import sys

from specgraph.cli import main

sys.exit(main() or 0)

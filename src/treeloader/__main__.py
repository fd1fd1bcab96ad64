"""Allow `python -m treeloader`."""

from treeloader.cli import main

main()

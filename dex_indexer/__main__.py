"""Allow running the indexer with ``python -m dex_indexer``."""

from __future__ import annotations

import sys

from dex_indexer.cli import main

if __name__ == "__main__":
    sys.exit(main())

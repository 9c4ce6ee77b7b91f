"""Run one stock check by hand against the configured database."""

from __future__ import annotations

import sys

from linkpool.jobs.check_stock import main

MANUAL_LIMIT = 5


if __name__ == "__main__":
    argv = sys.argv[1:] or ["--limit", str(MANUAL_LIMIT)]
    sys.exit(main(argv))

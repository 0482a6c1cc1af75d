from __future__ import annotations

from permarchive.cli import main

if __name__ == "__main__":
    raise SystemExit(main())

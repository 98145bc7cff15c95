# src/shelf_os/__main__.py
from __future__ import annotations

from shelf_os.cli import main


if __name__ == "__main__":
    raise SystemExit(main())

"""
Catalog synchronization library code.

This package is intended to hold code that is reused across:
- the FastAPI app in `api/`
- pipeline scripts in `scripts/`

App entrypoints (FastAPI routers, CLI scripts) should live outside this package and
import from `catalog_sync` rather than the other way around.
"""

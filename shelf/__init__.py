"""Shelf core package.

Modules:
- scanner: filesystem walk that builds the in-memory catalog
- catalog: immutable id-keyed index over the built entries
- archive: page listing/extraction for zip, rar and pdf files
- thumbnails: representative-file resolution for directories
- opds: FastAPI app, routing and OPDS feed rendering
- monitor: Watchdog-based filesystem monitoring (triggers rebuilds)
- config: INI parsing and config object
"""

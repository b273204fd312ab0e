"""
fieldstore Test Suite.

This package contains:
- unit/: Unit tests (definitions, naming, codecs, single components)
- integration/: Integration tests (storage controller over in-memory SQLite)
"""

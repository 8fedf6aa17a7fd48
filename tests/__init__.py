"""
itemstore schema compiler test suite.

This package contains:
- unit/: Unit tests (no external dependencies, no I/O beyond tmp_path)
"""

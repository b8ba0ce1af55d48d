"""
GeoSet Test Suite.

This package contains:
- unit/: Unit tests per module (temporary SQLite files)
- integration/: End-to-end scenarios across store, algebra, views and backup
"""

"""
Points Server Test Suite.

This package contains:
- unit/: Unit tests per module (temporary SQLite databases)
- integration/: Concurrency, end-to-end scenario and HTTP surface tests
"""

"""
Timeline Sync Test Suite.

This package contains:
- unit/: Unit tests (no external services; HTTP and S3 are mocked)
- integration/: Engine components wired over the in-memory backends
"""

"""
Test suite for autoschema.

- Unit tests run against an in-memory database layer
- Integration tests need a PostgreSQL server (``-m integration``)
"""

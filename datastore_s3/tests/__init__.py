"""
Tests Module: Unit and Integration Tests

Test Coverage:
    - Core types (Key, Result, error taxonomy)
    - Key codec and configuration
    - S3 client error translation and request shapes
    - Datastore CRUD, cache, queries and batches over the in-memory client
    - Repository lock and shutdown registry
"""

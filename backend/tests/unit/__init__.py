"""
Unit Tests

Unit tests run in isolation without external dependencies.
The database, LLM provider and Celery broker are replaced by the in-memory
repository and mocks.
"""

"""
Integration tests package.

Integration tests run against a real PostgreSQL database with the pgvector
extension available. They require:
- TEST_DATABASE_URL (postgresql+asyncpg://...) pointing at a disposable database

To run integration tests:
    TEST_DATABASE_URL=... pytest tests/integration/ -v --run-integration

To skip integration tests (default):
    pytest tests/ -v
"""

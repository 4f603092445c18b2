"""
Practice Core Test Suite

Test Structure:
    tests/
    ├── conftest.py          # Shared fixtures: in-memory repository, mocked LLM client
    └── unit/                # Unit tests (isolated, no external dependencies)

Running Tests:
    # Run all tests
    pytest backend/tests/ -v

    # Run with coverage
    pytest backend/tests/ --cov=practice_core --cov-report=html
"""

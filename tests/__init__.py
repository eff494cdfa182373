"""
Skrapr Tests

Run all tests:
    pytest tests/ -v

Run specific test file:
    pytest tests/test_worker.py -v

No browser is needed; the DevTools socket is simulated by tests/conftest.py.
"""

"""
Test suite for signed webhooks.

Run tests:
    pytest                          # All tests
    pytest tests/test_validator.py  # Validator state machine only
"""

"""
Tests Package - Unit Tests

Test structure:
- tests/fakes.py - In-memory stand-ins for the BigQuery source and the sink
- tests/conftest.py - Pytest configuration and shared fixtures
- tests/test_*.py - One module per component

The BigQuery client is never contacted; source streams are faked or mocked.
"""

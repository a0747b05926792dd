"""
OpenSmell Web Interface Test Suite

Test modules:
- test_api.py: API endpoint tests
- test_odor_index.py: Odor index loading and search tests
- test_search.py: Query parsing, result capping, recent searches
- test_pagination.py: Batch reveal tests
- test_rendering.py: Structure rendering tests

Run all tests:
    pytest tests/ -v

Run specific test file:
    pytest tests/test_odor_index.py -v

Run with coverage:
    pytest tests/ --cov=opensmell --cov-report=html

Author: OpenSmell Development Team
"""

"""
Test Suite
==========

Test suite matching the brandshot/ package structure.

Test Categories:
- unit: Unit tests for individual pipeline components
- integration: HTTP API tests against the full application
"""

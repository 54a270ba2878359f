"""
Test Utilities
==============

Common doubles and helpers for testing.
"""

from .mocks import *

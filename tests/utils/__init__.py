"""
Test Utilities

Helper tools for testing:
- fake_arkacdn.py: In-process stand-in for the Arkacdn HTTP API
"""

from .fake_arkacdn import FakeArkacdn, FakeClock, make_response

__all__ = ['FakeArkacdn', 'FakeClock', 'make_response']

"""
Tests for the OG Protocol backend.
"""

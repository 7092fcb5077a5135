"""Tests for embedkit.

Unit tests run without network access: HTTP goes through
``httpx.MockTransport``, DNS is monkeypatched and Redis is mocked.
"""

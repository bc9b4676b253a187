"""Sync protocol tests.

This package contains tests for the push/pull protocol:
- Endpoint tests through the Flask test client
- Atomicity of failed pushes
- Client tests against a real server process
"""

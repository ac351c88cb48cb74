"""
Auth Module Tests
----------------
Test suite for the identity and access layer.
Tests cover field encryption, tokens, refresh sessions, membership lookup,
permission evaluation, the authentication gate and the auth endpoints.
"""

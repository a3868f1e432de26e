"""
SensAI Controller Test Suite
============================

Unit tests for the pure flow, recommendation and statistics logic, HTTP
client tests against ``httpx.MockTransport``, and controller tests driven
through fake collaborators.

Modules:
    mocks.collaborators: Fake speech, sensor feed and chat collaborators
    conftest: Pytest configuration and fixtures
"""

"""
LLM Orchestrator Test Suite

Test Structure:
- unit/: Unit tests for individual components and the HTTP boundary
- conftest.py: Shared pytest configuration and fixtures
"""

"""
HTTP routers for the LLM Orchestrator service.
"""

"""Business logic services.

Services are called by route handlers and the completion orchestrator and
take an explicit database session; provider calls live under services.llm.
"""

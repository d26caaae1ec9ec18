"""
Request-level middleware and dependencies.

Provides:
- rate_limit_dependency: Redis sliding-window rate limiting for FastAPI routes
"""

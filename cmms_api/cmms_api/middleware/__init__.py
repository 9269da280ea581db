"""Starlette middleware and FastAPI guard dependencies."""

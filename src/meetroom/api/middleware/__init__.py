"""API middleware package."""

from src.meetroom.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]

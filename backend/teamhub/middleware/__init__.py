"""Middleware package."""

from teamhub.middleware.logging import LoggingMiddleware
from teamhub.middleware.request_id import RequestIDMiddleware

__all__ = ["LoggingMiddleware", "RequestIDMiddleware"]

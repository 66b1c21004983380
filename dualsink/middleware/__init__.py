"""
Middleware components for dualsink.

This module contains FastAPI middleware establishing the correlation
carrier at the boundary of each inbound request.
"""

from dualsink.middleware.correlation import CorrelationMiddleware, OPERATION_ID_HEADER

__all__ = [
    "CorrelationMiddleware",
    "OPERATION_ID_HEADER",
]

"""
Public Pydantic schemas used by FastAPI routes, services, and tests.

Schemas are grouped by domain module (quality incidents, shipments, supplier
scorecard) next to common reusable models such as the error envelope.
"""

from .common import ErrorResponse, MessageResponse  # noqa: F401

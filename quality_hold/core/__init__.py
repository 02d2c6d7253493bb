"""
Core application utilities for settings, errors, logging and FastAPI dependencies.

This package provides:
- Application-level settings (separate from DB settings)
- The domain error taxonomy
- Dependency helpers (authenticated actor, DB session, media storage)
"""

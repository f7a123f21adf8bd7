"""
asgi.py -- ASGI entry point for the Tigra auth service.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --workers 4

With more than one worker, point RATE_LIMIT_STORAGE_URI at a shared backend
(redis://...) so every worker counts against the same windows.
"""

from api.main import app

__all__ = ["app"]

"""
asgi.py -- ASGI entry point for the KEV catalog API.

uvicorn imports `app` from here rather than from api/main.py so the server
command stays stable if the application module moves.

Run with:  uvicorn asgi:app --port 4000
           python main.py serve
"""

from api.main import app

__all__ = ["app"]

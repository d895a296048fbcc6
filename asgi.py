"""
asgi.py -- ASGI entry point for CropCase.

api/main.py assembles the whole application; this module only exposes it
under the conventional name so process managers need no package knowledge.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]

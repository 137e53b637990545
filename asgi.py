"""
asgi.py -- Process entry point for authcore.

Builds the application once from environment configuration. Tests never import
this module; they call api.main.create_app() with their own Settings.

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app

app = create_app()

"""ASGI entrypoint (uvicorn holdingspace.api.app:app). Role comes from APP_ROLE."""

from .factory import create_app

app = create_app()

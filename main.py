"""
ASGI deployment entrypoint.
Builds the app from WIDDLER_* environment variables so uvicorn can find it as main:app
"""

from server import create_app
from widdler_backend.config import Settings

app = create_app(Settings.from_env())

__all__ = ["app"]

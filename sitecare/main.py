"""ASGI entrypoint for the SiteCare billing API (``uvicorn sitecare.main:app``)."""

from .core.app_factory import create_application

app = create_application()

__all__ = ("app",)

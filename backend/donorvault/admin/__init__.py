from .routes import admin_bp
from . import files, folders  # noqa: F401

__all__ = ["admin_bp"]

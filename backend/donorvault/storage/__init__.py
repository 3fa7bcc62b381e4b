from .routes import storage_bp

__all__ = ["storage_bp"]

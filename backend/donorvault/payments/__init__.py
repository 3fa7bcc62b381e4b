from .routes import payments_bp

__all__ = ["payments_bp"]

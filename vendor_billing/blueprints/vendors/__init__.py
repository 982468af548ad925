from .routes import vendors_bp  # noqa: F401

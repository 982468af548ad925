"""Jobs blueprint package."""

from .routes import jobs_bp  # noqa: F401

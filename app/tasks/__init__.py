"""Celery task definitions package."""

from app.tasks import recovery  # noqa: F401

__all__ = ["recovery"]

"""Persistence layer: database, ORM models and repositories."""

from beatcollector.infrastructure.persistence.database import Database
from beatcollector.infrastructure.persistence.models import Base

__all__ = ["Base", "Database"]

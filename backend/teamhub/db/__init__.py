"""Database package."""

from teamhub.db.base import Base, BaseModel

__all__ = ["Base", "BaseModel"]

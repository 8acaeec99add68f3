"""
SQLAlchemy base class for ORM models

Models import Base from here so they never pull in engine setup directly.
"""
from wgpanel.db.base import Base

__all__ = ["Base"]

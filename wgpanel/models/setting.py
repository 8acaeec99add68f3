"""
Setting ORM Model

Process-wide key/value overrides that shadow boot defaults.
"""

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from wgpanel.db.base_class import Base


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Setting {self.key}={self.value!r}>"

"""Generic key/value settings rows (exchange rates live here)."""
from __future__ import annotations

import datetime
import uuid

from sqlalchemy import ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from holdingdash.database import Base
from holdingdash.models.base import UUIDPrimaryKeyMixin


class Setting(UUIDPrimaryKeyMixin, Base):
    """A named setting.  ``version`` is bumped on every write so that
    concurrent editors can detect that they are working on stale values.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL")
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Setting {self.key!r}={self.value!r} v{self.version}>"

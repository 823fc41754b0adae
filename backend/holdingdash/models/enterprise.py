"""Enterprise (tenant) model."""
from __future__ import annotations

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from holdingdash.database import Base
from holdingdash.models.base import CreatedAtMixin, UUIDPrimaryKeyMixin


class Enterprise(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """A company of the group.  ``slug`` selects its module catalog."""
    __tablename__ = "enterprises"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    logo_url: Mapped[str | None] = mapped_column(String(500))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Enterprise {self.slug!r} {self.name!r}>"

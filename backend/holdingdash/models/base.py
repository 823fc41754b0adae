"""Base model utilities for HoldingDash.

Provides a UUID primary-key mixin so every model automatically gets
an ``id`` column of type ``UUID``.  The value is generated client-side
so freshly flushed objects can be used without a refresh round-trip.
"""
from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Uuid, func
from sqlalchemy.orm import Mapped, mapped_column


class UUIDPrimaryKeyMixin:
    """Mixin that adds a UUID primary key column named ``id``."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )


class CreatedAtMixin:
    """Mixin that adds a ``created_at`` timestamp filled by the database."""

    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

"""
CivicForm Middleware - Webform Structure Model
================================================

What:  ORM model for the `webform_structures` table (the structure cache).
Why:   The frontend cannot reach the backend that owns form definitions, so the
       backend pushes each definition here and the frontend reads it back.
How:   One row per webform_id. Writes replace structure_data wholesale through
       an upsert (see StructureService.save); nothing is ever merged.

Table Design Rationale:
    - webform_id UNIQUE: enforces "at most one structure per form" in the store,
      which is what lets concurrent pushes resolve as last-write-wins
    - structure_data JSON: opaque document, never inspected by the service.
      Stored as `json` (text) on PostgreSQL, not `jsonb`: a read returns the
      keys in the order they were pushed
    - version: bumped on every overwrite; advisory only, no optimistic locking
    - is_active: reads ignore inactive rows; an overwrite re-activates
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, text, true
from sqlalchemy.orm import Mapped, mapped_column

from civicform.database import Base
from civicform.timeutils import utcnow


# Key order and content survive a round trip on every backend
JSONDocument = JSON()


class WebformStructure(Base):
    """
    Cached form structure pushed by the backend.

    Lifecycle:
        1. Created on the first POST /api/webform/{id}/structure (version = 1)
        2. Every later push overwrites structure_data, version += 1
        3. Never deleted by the service
    """

    __tablename__ = "webform_structures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    webform_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        comment="Form identifier assigned by the backend",
    )

    structure_data: Mapped[Dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Opaque form structure document",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        server_default=text("1"),
        comment="Advisory counter incremented on every overwrite",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return (
            f"<WebformStructure(webform_id='{self.webform_id}', "
            f"version={self.version}, updated_at='{self.updated_at}')>"
        )

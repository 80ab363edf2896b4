"""
CivicForm Middleware - Submission Model
=========================================

What:  ORM model for the `submissions` table (the durable submission queue).
Why:   End users submit forms while the backend is unreachable; each payload
       waits here until the polling collector picks it up.
How:   Append-only inserts in `pending` state. Status only changes through an
       explicit collector call (PATCH /api/submissions/{id}/status).

State machine:
    pending → processing → sent
                         → failed (retry_count += 1)

    failed → pending is never automatic. No expiry, no cleanup sweep: rows
    accumulate until an operator purges them.

Query Patterns:
    - Pending drain:   WHERE status = 'pending' ORDER BY created_at, id LIMIT n
    - Operator listing: conjunctive filters, ORDER BY created_at DESC
    - Analytics:        GROUP BY status
"""

import enum
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from civicform.database import Base
from civicform.models.webform_structure import JSONDocument
from civicform.timeutils import utcnow


class SubmissionStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class Submission(Base):
    """One user-supplied payload awaiting or having undergone delivery."""

    __tablename__ = "submissions"

    # Numeric row id doubles as the ordering tie-breaker for equal created_at
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Format: {form_id}_{epoch_millis}_{7 base36 chars}
    submission_id: Mapped[str] = mapped_column(
        String(320),
        unique=True,
        nullable=False,
    )

    form_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Caller data with server-assigned `timestamp` and `submission_id` merged in
    submission_data: Mapped[Dict[str, Any]] = mapped_column(JSONDocument, nullable=False)

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=SubmissionStatus.PENDING.value,
        server_default=text("'pending'"),
    )

    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
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

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Client metadata captured at submission time (debugging only)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_submissions_form_id", "form_id"),
        Index("idx_submissions_status", "status"),
        Index("idx_submissions_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Submission(submission_id='{self.submission_id}', "
            f"status='{self.status}', retry_count={self.retry_count})>"
        )

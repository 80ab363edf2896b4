"""
CivicForm Middleware - Submission Queue Service
=================================================

What:  Append, drain, acknowledge and inspect queued form submissions.
Why:   The backend cannot receive submissions directly. A polling collector
       fetches them from here and reports back what it did with each one.
How:   One short statement (or two in drain mode) per call, committed before
       the call returns.

Delivery modes (settings.submission_delivery_mode, one per deployment):

    tracked (default)
        drain_pending() is a pure read. Rows stay `pending` until the
        collector calls set_status(). A collector that crashes before
        acknowledging simply sees the same rows on its next poll.

    drain
        drain_pending() deletes the rows it returns in the same transaction.
        If the response is lost after commit those rows are gone; if the
        transaction fails they are delivered again. At-least-once; two
        concurrent collectors may receive overlapping batches.

Status transitions (tracked mode):
    pending → processing → sent    (sent_at = now)
                         → failed  (retry_count += 1)
    Nothing moves a submission back to pending automatically.
"""

import logging
import secrets
import string
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from civicform.config import settings
from civicform.exceptions import DatabaseError, NotFoundError, ValidationError
from civicform.models.submission import Submission, SubmissionStatus
from civicform.schemas.submission import (
    SETTABLE_STATUSES,
    PendingSubmission,
    PendingSubmissionsResponse,
    SubmissionCreateResponse,
    SubmissionFilters,
    SubmissionListResponse,
    SubmissionRecord,
    SubmissionStat,
    SubmissionStatsResponse,
    SubmissionStatusResponse,
)
from civicform.timeutils import as_utc, epoch_millis, iso_utc, utcnow

logger = logging.getLogger(__name__)

SUBMISSION_ID_ALPHABET = string.digits + string.ascii_lowercase
SUBMISSION_ID_SUFFIX_LENGTH = 7
MAX_DRAIN_LIMIT = 1000


def generate_submission_id(form_id: str, now: Optional[datetime] = None) -> str:
    """
    Build `{form_id}_{epoch_millis}_{suffix}` with a 7-character base36 suffix.

    36^7 (~78 billion) suffixes per form per millisecond make a collision
    vanishingly unlikely; the UNIQUE constraint catches the rest.
    """
    millis = epoch_millis(now or utcnow())
    suffix = "".join(
        secrets.choice(SUBMISSION_ID_ALPHABET) for _ in range(SUBMISSION_ID_SUFFIX_LENGTH)
    )
    return f"{form_id}_{millis}_{suffix}"


class SubmissionService:
    """
    Business logic for the submission queue.

    Error Handling Strategy:
        Input problems raise ValidationError before the store is touched.
        SQLAlchemy failures are logged with full detail and re-raised as a
        generic DatabaseError. Nothing is retried here.
    """

    async def enqueue(
        self,
        db: AsyncSession,
        form_id: str,
        data: Optional[Dict[str, Any]],
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> SubmissionCreateResponse:
        """
        Queue one submission in `pending` state.

        The stored document is the caller's data with `timestamp` and
        `submission_id` set by the server. Caller-supplied values for either
        key are overwritten, never trusted.

        Raises:
            ValidationError: missing form id or submission_data (→ 400)
            DatabaseError:   insert failed (→ 500)
        """
        if not form_id or not form_id.strip():
            raise ValidationError(message="Missing form_id or submission_data", field="form_id")
        if data is None:
            raise ValidationError(
                message="Missing form_id or submission_data", field="submission_data"
            )
        if not isinstance(data, dict):
            raise ValidationError(
                message="submission_data must be a JSON object", field="submission_data"
            )

        now = utcnow()
        submission_id = generate_submission_id(form_id, now)
        stored = {**data, "timestamp": iso_utc(now), "submission_id": submission_id}

        submission = Submission(
            submission_id=submission_id,
            form_id=form_id,
            submission_data=stored,
            status=SubmissionStatus.PENDING.value,
            retry_count=0,
            created_at=now,
            updated_at=now,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        try:
            db.add(submission)
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Database error queuing submission for %s: %s", form_id, str(e), exc_info=True)
            raise DatabaseError(context={"form_id": form_id, "error_type": type(e).__name__})

        logger.info("Submission queued: %s (form=%s)", submission_id, form_id)
        return SubmissionCreateResponse(submission_id=submission_id, db_id=submission.id)

    async def drain_pending(
        self,
        db: AsyncSession,
        limit: int = 100,
        mode: Optional[str] = None,
    ) -> PendingSubmissionsResponse:
        """
        Return up to `limit` pending submissions, oldest first.

        Ordering is created_at ascending with the row id as tie-breaker, i.e.
        insertion order. In `drain` mode the returned rows are deleted.
        """
        if limit < 1 or limit > MAX_DRAIN_LIMIT:
            raise ValidationError(
                message=f"limit must be between 1 and {MAX_DRAIN_LIMIT}", field="limit"
            )
        drain = (mode or settings.submission_delivery_mode) == "drain"

        try:
            result = await db.execute(
                select(Submission)
                .where(Submission.status == SubmissionStatus.PENDING.value)
                .order_by(Submission.created_at.asc(), Submission.id.asc())
                .limit(limit)
            )
            rows = list(result.scalars().all())
            items = [self._to_pending(row) for row in rows]

            if drain and rows:
                await db.execute(
                    delete(Submission)
                    .where(Submission.id.in_([row.id for row in rows]))
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("Database error draining pending submissions: %s", str(e), exc_info=True)
            raise DatabaseError(context={"limit": limit, "error_type": type(e).__name__})

        if items:
            logger.info(
                "Pending submissions %s: %d", "drained" if drain else "read", len(items)
            )
        return PendingSubmissionsResponse(submissions=items, count=len(items), drained=drain)

    async def set_status(
        self,
        db: AsyncSession,
        submission_id: str,
        status: Optional[str],
        error_message: Optional[str] = None,
    ) -> SubmissionStatusResponse:
        """
        Apply a collector-reported status transition.

        `submission_id` is the generated identifier; a purely numeric value is
        also accepted as the row id returned by the pending listing.

        Raises:
            ValidationError: status not one of processing/sent/failed (→ 400, no mutation)
            NotFoundError:   no such submission (→ 404)
            DatabaseError:   update failed (→ 500)
        """
        if status not in SETTABLE_STATUSES:
            raise ValidationError(
                message="Invalid status. Must be: sent, failed, or processing",
                field="status",
                context={"allowed": list(SETTABLE_STATUSES)},
            )

        now = utcnow()
        identifier = Submission.submission_id == submission_id
        if submission_id.isascii() and submission_id.isdigit():
            identifier = or_(identifier, Submission.id == int(submission_id))

        retry_increment = 1 if status == SubmissionStatus.FAILED.value else 0
        stmt = (
            update(Submission)
            .where(identifier)
            .values(
                status=status,
                error_message=error_message,
                sent_at=now if status == SubmissionStatus.SENT.value else None,
                retry_count=Submission.retry_count + retry_increment,
                updated_at=now,
            )
            .returning(
                Submission.submission_id,
                Submission.status,
                Submission.retry_count,
                Submission.sent_at,
            )
            .execution_options(synchronize_session=False)
        )

        try:
            result = await db.execute(stmt)
            row = result.first()
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Database error updating submission %s: %s", submission_id, str(e), exc_info=True)
            raise DatabaseError(
                context={"submission_id": submission_id, "error_type": type(e).__name__}
            )

        if row is None:
            raise NotFoundError(resource="submission", resource_id=submission_id)

        logger.info(
            "Submission %s marked as %s (retry_count=%d)", row.submission_id, status, row.retry_count
        )
        return SubmissionStatusResponse(
            message=f"Submission marked as {status}",
            id=row.submission_id,
            status=row.status,
            retry_count=row.retry_count,
            sent_at=as_utc(row.sent_at),
        )

    async def filtered_list(
        self,
        db: AsyncSession,
        filters: SubmissionFilters,
    ) -> SubmissionListResponse:
        """
        Operator query: conjunctive filters, newest first.

        Read-only. Date bounds are inclusive and compared in UTC.
        """
        query = select(Submission)
        if filters.status:
            query = query.where(Submission.status == filters.status)
        if filters.form_id:
            query = query.where(Submission.form_id == filters.form_id)
        if filters.start_date:
            query = query.where(Submission.created_at >= as_utc(filters.start_date))
        if filters.end_date:
            query = query.where(Submission.created_at <= as_utc(filters.end_date))
        query = query.order_by(Submission.created_at.desc(), Submission.id.desc()).limit(filters.limit)

        try:
            result = await db.execute(query)
            rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing submissions: %s", str(e), exc_info=True)
            raise DatabaseError(context={"error_type": type(e).__name__})

        records = [self._to_record(row) for row in rows]
        return SubmissionListResponse(
            submissions=records,
            count=len(records),
            filters=filters.model_dump(mode="json", exclude_none=True),
        )

    async def stats(self, db: AsyncSession) -> SubmissionStatsResponse:
        """Submission counts grouped by status."""
        try:
            result = await db.execute(
                select(Submission.status, func.count(Submission.id))
                .group_by(Submission.status)
                .order_by(Submission.status)
            )
            rows = result.all()
        except SQLAlchemyError as e:
            logger.error("Database error computing submission stats: %s", str(e), exc_info=True)
            raise DatabaseError(context={"error_type": type(e).__name__})

        return SubmissionStatsResponse(
            stats=[SubmissionStat(status=status, count=count) for status, count in rows]
        )

    @staticmethod
    def _to_pending(row: Submission) -> PendingSubmission:
        return PendingSubmission(
            id=row.id,
            submission_id=row.submission_id,
            form_id=row.form_id,
            data=row.submission_data,
            status=row.status,
            created_at=as_utc(row.created_at),
            retry_count=row.retry_count,
        )

    @staticmethod
    def _to_record(row: Submission) -> SubmissionRecord:
        return SubmissionRecord(
            id=row.id,
            submission_id=row.submission_id,
            form_id=row.form_id,
            data=row.submission_data,
            status=row.status,
            retry_count=row.retry_count,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
            sent_at=as_utc(row.sent_at),
            error_message=row.error_message,
        )


submission_service = SubmissionService()

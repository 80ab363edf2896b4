"""
CivicForm Middleware - Submission Queue Service Tests
=======================================================

What we test:
    ✅ generated ids: {form_id}_{millis}_{7 base36}, unique
    ✅ server-owned `timestamp` / `submission_id` override caller values
    ✅ pending drain: oldest first, limit respected, tracked vs drain mode
    ✅ status updates: sent_at, retry_count, invalid status, unknown id
    ✅ filtered listing: conjunctive filters, newest first, echoed filters
"""

import re
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from civicform.exceptions import DatabaseError, NotFoundError, ValidationError
from civicform.models.submission import Submission
from civicform.schemas.submission import SubmissionFilters
from civicform.services.submission_service import SubmissionService, generate_submission_id

SUBMISSION_ID_PATTERN = re.compile(r"^contact_\d+_[0-9a-z]{7}$")


class TestGenerateSubmissionId:

    def test_format(self):
        assert SUBMISSION_ID_PATTERN.match(generate_submission_id("contact"))

    def test_uses_given_time(self):
        now = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
        submission_id = generate_submission_id("contact", now)

        assert submission_id.split("_")[1] == str(int(now.timestamp() * 1000))

    def test_ids_differ_within_the_same_millisecond(self):
        now = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
        ids = {generate_submission_id("contact", now) for _ in range(200)}

        assert len(ids) == 200


class TestEnqueue:

    def setup_method(self):
        self.service = SubmissionService()

    @pytest.mark.asyncio
    async def test_enqueue_creates_pending_submission(self, db_session):
        result = await self.service.enqueue(db_session, "contact", {"name": "Ada"})

        assert result.success is True
        assert SUBMISSION_ID_PATTERN.match(result.submission_id)
        row = await db_session.get(Submission, result.db_id)
        assert row.status == "pending"
        assert row.retry_count == 0
        assert row.form_id == "contact"

    @pytest.mark.asyncio
    async def test_server_fields_override_caller_values(self, db_session):
        data = {"name": "Ada", "timestamp": "1999-01-01", "submission_id": "forged"}

        result = await self.service.enqueue(db_session, "contact", data)
        row = await db_session.get(Submission, result.db_id)

        assert row.submission_data["name"] == "Ada"
        assert row.submission_data["submission_id"] == result.submission_id
        assert row.submission_data["timestamp"] != "1999-01-01"
        assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$", row.submission_data["timestamp"])

    @pytest.mark.asyncio
    async def test_caller_data_is_not_mutated(self, db_session):
        data = {"name": "Ada"}

        await self.service.enqueue(db_session, "contact", data)

        assert data == {"name": "Ada"}

    @pytest.mark.asyncio
    async def test_missing_data_rejected(self, mock_db_session):
        with pytest.raises(ValidationError, match="Missing form_id or submission_data"):
            await self.service.enqueue(mock_db_session, "contact", None)

        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_object_data_rejected(self, mock_db_session):
        with pytest.raises(ValidationError, match="must be a JSON object"):
            await self.service.enqueue(mock_db_session, "contact", ["a", "b"])

    @pytest.mark.asyncio
    async def test_missing_form_id_rejected(self, mock_db_session):
        with pytest.raises(ValidationError):
            await self.service.enqueue(mock_db_session, "", {"a": 1})


class TestDrainPending:

    def setup_method(self):
        self.service = SubmissionService()

    async def _enqueue(self, db, count, form_id="contact"):
        ids = []
        for i in range(count):
            result = await self.service.enqueue(db, form_id, {"n": i})
            ids.append(result.submission_id)
        return ids

    @pytest.mark.asyncio
    async def test_returns_oldest_first(self, db_session):
        ids = await self._enqueue(db_session, 3)

        result = await self.service.drain_pending(db_session, limit=10)

        assert [item.submission_id for item in result.submissions] == ids
        assert result.count == 3
        assert result.drained is False

    @pytest.mark.asyncio
    async def test_limit_one_returns_first_inserted(self, db_session):
        ids = await self._enqueue(db_session, 3)

        result = await self.service.drain_pending(db_session, limit=1)

        assert result.count == 1
        assert result.submissions[0].submission_id == ids[0]
        assert result.submissions[0].data["n"] == 0

    @pytest.mark.asyncio
    async def test_tracked_mode_is_a_pure_read(self, db_session):
        await self._enqueue(db_session, 2)

        first = await self.service.drain_pending(db_session, limit=10, mode="tracked")
        second = await self.service.drain_pending(db_session, limit=10, mode="tracked")

        assert first.count == 2
        assert [s.submission_id for s in second.submissions] == [
            s.submission_id for s in first.submissions
        ]

    @pytest.mark.asyncio
    async def test_drain_mode_deletes_returned_rows(self, db_session):
        ids = await self._enqueue(db_session, 3)

        drained = await self.service.drain_pending(db_session, limit=2, mode="drain")
        remaining = await self.service.drain_pending(db_session, limit=10, mode="tracked")

        assert drained.drained is True
        assert [s.submission_id for s in drained.submissions] == ids[:2]
        assert [s.submission_id for s in remaining.submissions] == ids[2:]
        total = await db_session.scalar(select(func.count(Submission.id)))
        assert total == 1

    @pytest.mark.asyncio
    async def test_only_pending_rows_are_returned(self, db_session):
        ids = await self._enqueue(db_session, 2)
        await self.service.set_status(db_session, ids[0], "sent")

        result = await self.service.drain_pending(db_session, limit=10)

        assert [s.submission_id for s in result.submissions] == [ids[1]]

    @pytest.mark.asyncio
    async def test_empty_queue(self, db_session):
        result = await self.service.drain_pending(db_session)

        assert result.submissions == []
        assert result.count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, -1, 1001])
    async def test_limit_out_of_range_rejected(self, mock_db_session, limit):
        with pytest.raises(ValidationError, match="limit"):
            await self.service.drain_pending(mock_db_session, limit=limit)

        mock_db_session.execute.assert_not_awaited()


class TestSetStatus:

    def setup_method(self):
        self.service = SubmissionService()

    @pytest.mark.asyncio
    async def test_sent_sets_sent_at(self, db_session):
        created = await self.service.enqueue(db_session, "contact", {"a": 1})

        result = await self.service.set_status(db_session, created.submission_id, "sent")

        assert result.status == "sent"
        assert result.sent_at is not None
        assert result.retry_count == 0
        assert result.id == created.submission_id

    @pytest.mark.asyncio
    async def test_failed_increments_retry_count(self, db_session):
        created = await self.service.enqueue(db_session, "contact", {"a": 1})

        first = await self.service.set_status(db_session, created.submission_id, "failed", "timeout")
        second = await self.service.set_status(db_session, created.submission_id, "failed")

        assert first.retry_count == 1
        assert second.retry_count == 2
        assert second.sent_at is None

    @pytest.mark.asyncio
    async def test_error_message_is_stored(self, db_session):
        created = await self.service.enqueue(db_session, "contact", {"a": 1})

        await self.service.set_status(db_session, created.submission_id, "failed", "backend 502")
        db_session.expire_all()
        row = await db_session.get(Submission, created.db_id)

        assert row.error_message == "backend 502"
        assert row.status == "failed"

    @pytest.mark.asyncio
    async def test_numeric_row_id_is_accepted(self, db_session):
        created = await self.service.enqueue(db_session, "contact", {"a": 1})

        result = await self.service.set_status(db_session, str(created.db_id), "processing")

        assert result.status == "processing"
        assert result.id == created.submission_id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["bogus", "pending", "", None, "SENT"])
    async def test_invalid_status_rejected_without_mutation(self, db_session, status):
        created = await self.service.enqueue(db_session, "contact", {"a": 1})

        with pytest.raises(ValidationError, match="Invalid status"):
            await self.service.set_status(db_session, created.submission_id, status)

        db_session.expire_all()
        row = await db_session.get(Submission, created.db_id)
        assert row.status == "pending"
        assert row.retry_count == 0

    @pytest.mark.asyncio
    async def test_unknown_submission_raises_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            await self.service.set_status(db_session, "contact_0_zzzzzzz", "sent")

    @pytest.mark.asyncio
    async def test_unicode_digits_are_not_treated_as_row_id(self, db_session):
        with pytest.raises(NotFoundError):
            await self.service.set_status(db_session, "١٢", "sent")


class TestFilteredList:

    def setup_method(self):
        self.service = SubmissionService()

    @pytest.mark.asyncio
    async def test_conjunctive_filters(self, db_session):
        a = await self.service.enqueue(db_session, "contact", {"n": 1})
        await self.service.enqueue(db_session, "contact", {"n": 2})
        await self.service.enqueue(db_session, "survey", {"n": 3})
        await self.service.set_status(db_session, a.submission_id, "sent")

        result = await self.service.filtered_list(
            db_session, SubmissionFilters(status="sent", form_id="contact")
        )

        assert result.count == 1
        assert result.submissions[0].submission_id == a.submission_id
        assert result.filters == {"limit": 100, "status": "sent", "form_id": "contact"}

    @pytest.mark.asyncio
    async def test_newest_first(self, db_session):
        first = await self.service.enqueue(db_session, "contact", {"n": 1})
        second = await self.service.enqueue(db_session, "contact", {"n": 2})

        result = await self.service.filtered_list(db_session, SubmissionFilters())

        assert [s.submission_id for s in result.submissions] == [
            second.submission_id,
            first.submission_id,
        ]

    @pytest.mark.asyncio
    async def test_date_bounds(self, db_session):
        await self.service.enqueue(db_session, "contact", {"n": 1})
        now = datetime.now(timezone.utc)

        past = await self.service.filtered_list(
            db_session, SubmissionFilters(end_date=now - timedelta(days=1))
        )
        current = await self.service.filtered_list(
            db_session,
            SubmissionFilters(start_date=now - timedelta(hours=1), end_date=now + timedelta(hours=1)),
        )

        assert past.count == 0
        assert current.count == 1

    @pytest.mark.asyncio
    async def test_limit(self, db_session):
        for i in range(5):
            await self.service.enqueue(db_session, "contact", {"n": i})

        result = await self.service.filtered_list(db_session, SubmissionFilters(limit=2))

        assert result.count == 2

    def test_unknown_status_filter_rejected(self):
        with pytest.raises(ValueError):
            SubmissionFilters(status="archived")


class TestStoreFailures:

    def setup_method(self):
        self.service = SubmissionService()

    @pytest.mark.asyncio
    async def test_drain_failure_raises_database_error(self, mock_db_session):
        from sqlalchemy.exc import OperationalError

        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("gone"))

        with pytest.raises(DatabaseError):
            await self.service.drain_pending(mock_db_session, limit=5)


class TestStats:

    @pytest.mark.asyncio
    async def test_counts_by_status(self, db_session):
        service = SubmissionService()
        a = await service.enqueue(db_session, "contact", {"n": 1})
        await service.enqueue(db_session, "contact", {"n": 2})
        await service.set_status(db_session, a.submission_id, "sent")

        result = await service.stats(db_session)

        assert {stat.status: stat.count for stat in result.stats} == {"pending": 1, "sent": 1}

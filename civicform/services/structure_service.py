"""
CivicForm Middleware - Structure Cache Service
================================================

What:  Get/set of cached form structures, keyed by form identifier.
Why:   The backend pushes structures it cannot serve directly; the frontend
       reads them back from here.
How:   save() is a single atomic upsert statement, get() a single-key read.

Consistency contract:
    - At most one active structure per form id (UNIQUE on webform_id).
    - save() always overwrites. Concurrent writers to the same form id are
      serialised by the store's ON CONFLICT handling, so the last statement
      to execute wins deterministically. No merge, no lost-update detection.
    - version is incremented on every overwrite. It is informational; nothing
      in the service compares it.
"""

import logging
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from civicform.exceptions import DatabaseError, NotFoundError, ValidationError
from civicform.models.webform_structure import WebformStructure
from civicform.schemas.structure import StructureResponse, StructureSaveResponse
from civicform.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

# Dialects with INSERT ... ON CONFLICT DO UPDATE support
_UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class StructureService:
    """
    Business logic for the structure cache.

    Stateless; receives the request's session on every call.
    """

    async def save(
        self,
        db: AsyncSession,
        form_id: str,
        document: Dict[str, Any],
    ) -> StructureSaveResponse:
        """
        Store `document` as the structure for `form_id`, replacing any prior value.

        Validation (no store access on failure):
            - form_id must be a non-blank string
            - document must be a non-empty JSON object; its content is not inspected

        Raises:
            ValidationError: missing form id or empty/non-object document (→ 400)
            DatabaseError:   the upsert failed (→ 500)
        """
        if not form_id or not form_id.strip():
            raise ValidationError(message="Missing webform_id parameter", field="webform_id")
        if not isinstance(document, dict) or not document:
            raise ValidationError(message="Missing form structure data", field="structure")

        try:
            dialect = db.get_bind().dialect.name
            insert = _UPSERT_INSERTS.get(dialect)
            if insert is None:
                row_id, version = await self._save_without_upsert(db, form_id, document)
            else:
                row_id, version = await self._upsert(db, insert, form_id, document)
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Database error saving structure %s: %s", form_id, str(e), exc_info=True)
            raise DatabaseError(context={"webform_id": form_id, "error_type": type(e).__name__})

        logger.info("Structure saved: webform_id=%s version=%d", form_id, version)
        return StructureSaveResponse(webform_id=form_id, id=row_id, version=version)

    async def _upsert(self, db: AsyncSession, insert, form_id: str, document: Dict[str, Any]):
        now = utcnow()
        stmt = insert(WebformStructure).values(
            webform_id=form_id,
            structure_data=document,
            version=1,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        # created_at is deliberately absent from set_: first push time survives
        stmt = stmt.on_conflict_do_update(
            index_elements=["webform_id"],
            set_={
                "structure_data": stmt.excluded.structure_data,
                "version": WebformStructure.version + 1,
                "is_active": True,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(WebformStructure.id, WebformStructure.version)

        result = await db.execute(stmt)
        row = result.one()
        return row.id, row.version

    async def _save_without_upsert(self, db: AsyncSession, form_id: str, document: Dict[str, Any]):
        """Read-then-write fallback for dialects without ON CONFLICT."""
        result = await db.execute(
            select(WebformStructure).where(WebformStructure.webform_id == form_id)
        )
        structure = result.scalar_one_or_none()
        now = utcnow()
        if structure is None:
            structure = WebformStructure(
                webform_id=form_id,
                structure_data=document,
                version=1,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            db.add(structure)
        else:
            structure.structure_data = document
            structure.version = structure.version + 1
            structure.is_active = True
            structure.updated_at = now
        await db.flush()
        return structure.id, structure.version

    async def get(self, db: AsyncSession, form_id: str) -> StructureResponse:
        """
        Return the active structure for `form_id`.

        Raises:
            NotFoundError: no active structure for this id (→ 404, never 500)
            DatabaseError: query failed (→ 500)
        """
        try:
            result = await db.execute(
                select(WebformStructure).where(
                    WebformStructure.webform_id == form_id,
                    WebformStructure.is_active.is_(True),
                )
            )
            structure = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error fetching structure %s: %s", form_id, str(e), exc_info=True)
            raise DatabaseError(context={"webform_id": form_id, "error_type": type(e).__name__})

        if structure is None:
            raise NotFoundError(resource="webform structure", resource_id=form_id)

        return StructureResponse(
            webform_id=structure.webform_id,
            structure=structure.structure_data,
            version=structure.version,
            created_at=as_utc(structure.created_at),
            updated_at=as_utc(structure.updated_at),
        )


structure_service = StructureService()

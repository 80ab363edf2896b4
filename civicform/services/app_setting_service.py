"""
CivicForm Middleware - Runtime Settings Service
=================================================

What:  Typed key/value settings kept in the `app_settings` table.
Why:   Operators adjust a handful of values (retry ceiling, log retention)
       without redeploying. Environment configuration stays in
       civicform.config; this table only holds values meant to change at
       runtime.
How:   Values are stored as text and decoded by `data_type` on read:

       data_type   stored as           read back as
       ---------   -----------------   ------------------------
       string      the text itself     str
       number      str(value)          int, or float if it has a fraction
       boolean     "true" / "false"    bool (only "true" is True)
       json        json.dumps(value)   parsed JSON
"""

import json
import logging
import math
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from civicform.exceptions import DatabaseError, ValidationError
from civicform.models.app_setting import AppSetting
from civicform.schemas.common import AppSettingItem, AppSettingSaveResponse, AppSettingsResponse
from civicform.timeutils import utcnow

logger = logging.getLogger(__name__)

DATA_TYPES = ("string", "number", "boolean", "json")

# Seeded on startup when absent; existing values are never overwritten.
DEFAULT_SETTINGS: List[Dict[str, Any]] = [
    {
        "key": "app_name",
        "value": "CivicForm Middleware",
        "data_type": "string",
        "description": "Application name",
    },
    {
        "key": "max_retry_attempts",
        "value": 3,
        "data_type": "number",
        "description": "Maximum retry attempts for failed submissions",
    },
    {
        "key": "cleanup_logs_after_days",
        "value": 30,
        "data_type": "number",
        "description": "Days to keep logs before cleanup",
    },
]


def encode_value(value: Any, data_type: str) -> str:
    """Serialize `value` to the text stored for `data_type`."""
    if data_type == "json":
        return json.dumps(value)
    if data_type == "boolean":
        if isinstance(value, str):
            return "true" if value.strip().lower() == "true" else "false"
        return "true" if value else "false"
    if data_type == "number":
        if isinstance(value, bool):
            raise ValidationError(message="value must be a number", field="value")
        try:
            number = decode_value(str(value).strip(), "number")
        except ValueError:
            raise ValidationError(message="value must be a number", field="value")
        if not math.isfinite(number):
            raise ValidationError(message="value must be a finite number", field="value")
        return str(number)
    return str(value)


def decode_value(raw: str, data_type: str) -> Any:
    if data_type == "number":
        try:
            return int(raw)
        except ValueError:
            return float(raw)
    if data_type == "boolean":
        return raw == "true"
    if data_type == "json":
        return json.loads(raw)
    return raw


class AppSettingService:

    async def set(
        self,
        db: AsyncSession,
        key: Optional[str],
        value: Any,
        description: Optional[str] = None,
        data_type: str = "string",
    ) -> AppSettingSaveResponse:
        """
        Create or replace the setting `key`.

        Raises:
            ValidationError: missing key or value, unknown data_type, or a
                             value that does not fit its data_type (→ 400)
            DatabaseError:   write failed (→ 500)
        """
        if not key or value is None:
            raise ValidationError(message="Missing key or value", field="key" if not key else "value")
        if data_type not in DATA_TYPES:
            raise ValidationError(
                message=f"data_type must be one of: {', '.join(DATA_TYPES)}",
                field="data_type",
            )
        stored = encode_value(value, data_type)

        try:
            setting = await db.get(AppSetting, key)
            now = utcnow()
            if setting is None:
                db.add(
                    AppSetting(
                        key=key,
                        value=stored,
                        data_type=data_type,
                        description=description,
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                setting.value = stored
                setting.data_type = data_type
                if description is not None:
                    setting.description = description
                setting.updated_at = now
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Database error saving setting %s: %s", key, str(e), exc_info=True)
            raise DatabaseError(context={"key": key, "error_type": type(e).__name__})

        logger.info("Setting saved: %s (%s)", key, data_type)
        return AppSettingSaveResponse(key=key, value=decode_value(stored, data_type))

    async def get(self, db: AsyncSession, key: str, default: Any = None) -> Any:
        """Decoded value of `key`, or `default` when unset."""
        try:
            setting = await db.get(AppSetting, key)
        except SQLAlchemyError as e:
            logger.error("Database error reading setting %s: %s", key, str(e), exc_info=True)
            raise DatabaseError(context={"key": key, "error_type": type(e).__name__})
        if setting is None:
            return default
        return decode_value(setting.value, setting.data_type)

    async def list_all(self, db: AsyncSession) -> AppSettingsResponse:
        try:
            result = await db.execute(select(AppSetting).order_by(AppSetting.key))
            rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing settings: %s", str(e), exc_info=True)
            raise DatabaseError(context={"error_type": type(e).__name__})

        return AppSettingsResponse(
            settings=[
                AppSettingItem(
                    key=row.key,
                    value=decode_value(row.value, row.data_type),
                    data_type=row.data_type,
                    description=row.description,
                )
                for row in rows
            ]
        )

    async def seed_defaults(self, db: AsyncSession) -> int:
        """Insert DEFAULT_SETTINGS that are missing. Returns how many were added."""
        added = 0
        for default in DEFAULT_SETTINGS:
            if await db.get(AppSetting, default["key"]) is not None:
                continue
            now = utcnow()
            db.add(
                AppSetting(
                    key=default["key"],
                    value=encode_value(default["value"], default["data_type"]),
                    data_type=default["data_type"],
                    description=default["description"],
                    created_at=now,
                    updated_at=now,
                )
            )
            added += 1
        await db.flush()
        return added


app_setting_service = AppSettingService()

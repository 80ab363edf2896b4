"""
CivicForm Middleware - Runtime Settings Service Tests
=======================================================
"""

import pytest

from civicform.exceptions import ValidationError
from civicform.services.app_setting_service import (
    DEFAULT_SETTINGS,
    AppSettingService,
    decode_value,
    encode_value,
)


class TestValueCoding:

    @pytest.mark.parametrize(
        "value, data_type, stored",
        [
            ("hello", "string", "hello"),
            (3, "number", "3"),
            ("2.5", "number", "2.5"),
            (True, "boolean", "true"),
            (False, "boolean", "false"),
            ("TRUE", "boolean", "true"),
            ({"a": [1, 2]}, "json", '{"a": [1, 2]}'),
        ],
    )
    def test_encode(self, value, data_type, stored):
        assert encode_value(value, data_type) == stored

    def test_decode_number(self):
        assert decode_value("3", "number") == 3
        assert isinstance(decode_value("3", "number"), int)
        assert decode_value("2.5", "number") == 2.5

    def test_decode_boolean_only_true_is_true(self):
        assert decode_value("true", "boolean") is True
        assert decode_value("false", "boolean") is False
        assert decode_value("yes", "boolean") is False

    def test_decode_json(self):
        assert decode_value('{"a": [1, 2]}', "json") == {"a": [1, 2]}

    @pytest.mark.parametrize("value", ["abc", True, "nan", "inf"])
    def test_non_numeric_number_rejected(self, value):
        with pytest.raises(ValidationError):
            encode_value(value, "number")


class TestAppSettingService:

    def setup_method(self):
        self.service = AppSettingService()

    @pytest.mark.asyncio
    async def test_set_then_get(self, db_session):
        await self.service.set(db_session, "max_retry_attempts", 7, data_type="number")

        assert await self.service.get(db_session, "max_retry_attempts") == 7

    @pytest.mark.asyncio
    async def test_set_overwrites(self, db_session):
        await self.service.set(db_session, "feature", True, data_type="boolean")
        await self.service.set(db_session, "feature", False, data_type="boolean")

        assert await self.service.get(db_session, "feature") is False

    @pytest.mark.asyncio
    async def test_get_missing_returns_default(self, db_session):
        assert await self.service.get(db_session, "absent", default="fallback") == "fallback"

    @pytest.mark.asyncio
    async def test_unknown_data_type_rejected(self, db_session):
        with pytest.raises(ValidationError, match="data_type"):
            await self.service.set(db_session, "k", "v", data_type="blob")

    @pytest.mark.asyncio
    async def test_missing_key_rejected(self, db_session):
        with pytest.raises(ValidationError, match="Missing key or value"):
            await self.service.set(db_session, None, "v")

    @pytest.mark.asyncio
    async def test_list_all_ordered_by_key(self, db_session):
        await self.service.set(db_session, "zeta", "z")
        await self.service.set(db_session, "alpha", "a")

        result = await self.service.list_all(db_session)

        assert [item.key for item in result.settings] == ["alpha", "zeta"]

    @pytest.mark.asyncio
    async def test_seed_defaults_is_idempotent(self, db_session):
        first = await self.service.seed_defaults(db_session)
        second = await self.service.seed_defaults(db_session)

        assert first == len(DEFAULT_SETTINGS)
        assert second == 0
        assert await self.service.get(db_session, "app_name") == "CivicForm Middleware"
        assert await self.service.get(db_session, "max_retry_attempts") == 3
        assert await self.service.get(db_session, "cleanup_logs_after_days") == 30

    @pytest.mark.asyncio
    async def test_seed_keeps_existing_values(self, db_session):
        await self.service.set(db_session, "max_retry_attempts", 9, data_type="number")

        added = await self.service.seed_defaults(db_session)

        assert added == len(DEFAULT_SETTINGS) - 1
        assert await self.service.get(db_session, "max_retry_attempts") == 9

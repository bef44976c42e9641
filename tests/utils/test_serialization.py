"""Tests for utils/serialization.py - JSONB encoding."""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from core.models import InvoiceStatus
from utils.serialization import json_dumps


class TestJsonDumps:

    def test_decimal_kept_exact_as_string(self):
        assert json.loads(json_dumps({"amount": Decimal("0.10")})) == {"amount": "0.10"}

    def test_enum_uuid_and_dates(self):
        uid = UUID("00000000-0000-0000-0000-000000000001")
        result = json.loads(json_dumps({
            "status": InvoiceStatus.PAID,
            "id": uid,
            "due": date(2026, 1, 31),
            "at": datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
        }))
        assert result == {
            "status": "paid",
            "id": str(uid),
            "due": "2026-01-31",
            "at": "2026-01-01T12:00:00+00:00",
        }

    def test_unknown_type_raises(self):
        with pytest.raises(TypeError, match="set is not JSON serializable"):
            json_dumps({"tags": {"a"}})

"""Tests for DataAggregator — isolation, failure policy, secret stripping."""

from __future__ import annotations

import asyncio
import uuid

import pytest
from conftest import NOW

from src.compliance.aggregator import (
    METADATA_SECTION,
    DataAggregator,
    is_sensitive_key,
    strip_sensitive,
)
from src.compliance.errors import AggregationError


class FakeSource:
    """In-memory data source."""

    def __init__(self, name, data, data_type=None, delay=0.0, error=None):
        self.name = name
        self.data_type = data_type or name
        self._data = data
        self._delay = delay
        self._error = error
        self.calls = 0

    async def fetch(self, subject_id):
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._data


# ── strip_sensitive ──────────────────────────────────────────────────


class TestStripSensitive:
    @pytest.mark.parametrize(
        "key",
        ["password_hash", "password_reset_token", "email_verification_token", "access_token",
         "refresh_token", "verification_token", "client_secret", "stripe_api_key", "Password"],
    )
    def test_secret_keys(self, key):
        assert is_sensitive_key(key)

    @pytest.mark.parametrize("key", ["email", "first_name", "token_count", "expires_at", "status"])
    def test_ordinary_keys(self, key):
        assert not is_sensitive_key(key)

    def test_removes_secrets_at_every_depth(self):
        value = {
            "email": "ada@example.com",
            "password_hash": "$2b$",
            "integrations": [{"provider": "google", "access_token": "ya29", "meta": {"refresh_token": "1//"}}],
        }

        assert strip_sensitive(value) == {
            "email": "ada@example.com",
            "integrations": [{"provider": "google", "meta": {}}],
        }

    def test_scalars_untouched(self):
        assert strip_sensitive(None) is None
        assert strip_sensitive("x") == "x"


# ── collect ──────────────────────────────────────────────────────────


class TestCollect:
    """Test DataAggregator.collect."""

    @pytest.mark.asyncio()
    async def test_one_section_per_source(self):
        subject_id = uuid.uuid4()
        aggregator = DataAggregator([
            FakeSource("profile", {"email": "ada@example.com"}, data_type="user_account"),
            FakeSource("bookings", [{"id": "b1"}, {"id": "b2"}], data_type="booking"),
            FakeSource("settings", None, data_type="user_settings"),
        ])

        document = await aggregator.collect(subject_id, NOW)

        assert document.sections["profile"] == {"email": "ada@example.com"}
        assert document.sections["bookings"] == [{"id": "b1"}, {"id": "b2"}]
        assert document.sections["settings"] is None
        assert document.data_types["bookings"] == "booking"
        assert document.generated_at == NOW

    @pytest.mark.asyncio()
    async def test_metadata_section(self):
        subject_id = uuid.uuid4()
        aggregator = DataAggregator([FakeSource("profile", {}), FakeSource("bookings", [])])

        document = await aggregator.collect(subject_id, NOW)

        metadata = document.sections[METADATA_SECTION]
        assert metadata["export_date"] == NOW.isoformat()
        assert metadata["subject_id"] == str(subject_id)
        assert metadata["sources"] == ["profile", "bookings"]
        assert "Article 15" in metadata["export_reason"]

    @pytest.mark.asyncio()
    async def test_secrets_never_reach_document(self):
        aggregator = DataAggregator([
            FakeSource("profile", {"email": "a@b.c", "password_hash": "h", "password_reset_token": "r"}),
            FakeSource("compliance_requests", [{"status": "pending", "verification_token": "v"}]),
        ])

        document = await aggregator.collect(uuid.uuid4(), NOW)

        text = str(document.to_dict())
        assert "password_hash" not in text
        assert "password_reset_token" not in text
        assert "verification_token" not in text

    @pytest.mark.asyncio()
    async def test_any_failed_source_fails_whole_aggregation(self):
        """No partial document: failures are collected and reported by name."""
        healthy = FakeSource("profile", {"email": "a@b.c"})
        aggregator = DataAggregator([
            healthy,
            FakeSource("bookings", None, error=ConnectionError("down")),
            FakeSource("billing_history", None, error=RuntimeError("bad row")),
        ])

        with pytest.raises(AggregationError) as exc_info:
            await aggregator.collect(uuid.uuid4(), NOW)

        assert exc_info.value.failed_sources == ["bookings", "billing_history"]
        assert exc_info.value.reason == "aggregation_failed"
        assert exc_info.value.retryable is True
        assert healthy.calls == 1

    @pytest.mark.asyncio()
    async def test_timeout_raises_aggregation_error(self):
        aggregator = DataAggregator([FakeSource("slow", {}, delay=1.0)], timeout=0.01)

        with pytest.raises(AggregationError) as exc_info:
            await aggregator.collect(uuid.uuid4(), NOW)

        assert exc_info.value.failed_sources == ["slow"]

    @pytest.mark.asyncio()
    async def test_concurrency_is_bounded(self):
        running = 0
        peak = 0

        class CountingSource(FakeSource):
            async def fetch(self, subject_id):
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                running -= 1
                return []

        aggregator = DataAggregator([CountingSource(f"s{i}", []) for i in range(6)], concurrency=2)
        await aggregator.collect(uuid.uuid4(), NOW)

        assert peak == 2


class TestConstruction:
    def test_duplicate_source_names_rejected(self):
        with pytest.raises(ValueError):
            DataAggregator([FakeSource("profile", {}), FakeSource("profile", {})])

    def test_metadata_name_reserved(self):
        with pytest.raises(ValueError):
            DataAggregator([FakeSource(METADATA_SECTION, {})])

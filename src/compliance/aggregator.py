"""Data aggregator — collects a subject's data from independent sources.

Each source is queried in isolation with bounded concurrency. A failing
source never corrupts the document: failures are collected, and if any
source failed the whole aggregation fails with AggregationError naming them.
No partial export is ever produced.

Secrets (password hashes, verification / reset / OAuth tokens, API keys) are
stripped here, at aggregation time, so no output format can leak them.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from src.compliance.errors import AggregationError

logger = logging.getLogger(__name__)

METADATA_SECTION = "export_metadata"
EXPORT_REASON = "GDPR Article 15/20 - Right of access and data portability"

# Exact key names that are secrets wherever they appear
SENSITIVE_KEYS: frozenset[str] = frozenset({
    "password",
    "password_hash",
    "token",
    "secret",
    "api_key",
    "verification_token",
    "email_verification_token",
    "password_reset_token",
    "reset_token",
    "access_token",
    "refresh_token",
    "client_secret",
})
_SENSITIVE_SUFFIXES: tuple[str, ...] = ("_token", "_secret", "_password", "_api_key")


class DataSource(Protocol):
    """One independent store holding part of a subject's data.

    `fetch` returns a dict (single-record section), a list of dicts, or None
    when the subject has no record in this store.
    """

    name: str
    data_type: str

    async def fetch(self, subject_id: uuid.UUID) -> Any: ...


@dataclass
class AggregatedDocument:
    """Unified snapshot of a subject's data, one section per category."""

    subject_id: uuid.UUID
    generated_at: datetime
    sections: dict[str, Any] = field(default_factory=dict)
    # section name → row tag used when flattening
    data_types: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.sections)


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return lowered in SENSITIVE_KEYS or lowered.endswith(_SENSITIVE_SUFFIXES)


def strip_sensitive(value: Any) -> Any:
    """Return a copy of `value` with secret keys removed at every depth."""
    if isinstance(value, dict):
        return {k: strip_sensitive(v) for k, v in value.items() if not is_sensitive_key(str(k))}
    if isinstance(value, (list, tuple)):
        return [strip_sensitive(v) for v in value]
    return value


class DataAggregator:
    """Builds an AggregatedDocument from a fixed list of sources."""

    def __init__(
        self,
        sources: Sequence[DataSource],
        concurrency: int = 4,
        timeout: float | None = None,
    ) -> None:
        names = [s.name for s in sources]
        if len(set(names)) != len(names) or METADATA_SECTION in names:
            msg = f"Source names must be unique and not {METADATA_SECTION!r}: {names}"
            raise ValueError(msg)
        self._sources = list(sources)
        self._concurrency = concurrency
        self._timeout = timeout

    @property
    def source_names(self) -> list[str]:
        return [s.name for s in self._sources]

    async def collect(self, subject_id: uuid.UUID, now: datetime | None = None) -> AggregatedDocument:
        """Query every source and assemble the document.

        Raises AggregationError if any source fails or the timeout expires.
        """
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _fetch(source: DataSource) -> Any:
            async with semaphore:
                return await source.fetch(subject_id)

        gathered = asyncio.gather(*[_fetch(s) for s in self._sources], return_exceptions=True)
        try:
            results = await asyncio.wait_for(gathered, timeout=self._timeout)
        except TimeoutError as exc:
            logger.error("Aggregation timed out after %ss for user=%s", self._timeout, subject_id)
            raise AggregationError(self.source_names, "Aggregation deadline exceeded") from exc

        failed: list[str] = []
        for source, result in zip(self._sources, results):
            if isinstance(result, Exception):
                failed.append(source.name)
                logger.error(
                    "Data source %s failed for user=%s",
                    source.name,
                    subject_id,
                    exc_info=result,
                )
        if failed:
            raise AggregationError(failed)

        generated_at = now or datetime.now(UTC)
        document = AggregatedDocument(subject_id=subject_id, generated_at=generated_at)
        for source, result in zip(self._sources, results):
            document.sections[source.name] = strip_sensitive(result)
            document.data_types[source.name] = source.data_type

        document.sections[METADATA_SECTION] = {
            "export_date": generated_at.isoformat(),
            "subject_id": str(subject_id),
            "export_reason": EXPORT_REASON,
            "sources": self.source_names,
        }
        document.data_types[METADATA_SECTION] = METADATA_SECTION

        logger.info("Aggregated %d sections for user=%s", len(self._sources), subject_id)
        return document

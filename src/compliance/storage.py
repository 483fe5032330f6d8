"""Artifact storage — persists rendered exports and returns a retrievable reference.

Only the reference contract matters to the engine; how the file is later
served (signed URL, authenticated download route) is decided elsewhere.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import uuid
from pathlib import Path
from typing import Protocol

from src.compliance.serializer import ExportArtifact

logger = logging.getLogger(__name__)


class ArtifactStorage(Protocol):
    async def store(self, request_id: uuid.UUID, artifact: ExportArtifact) -> str:
        """Persist `artifact` and return its export URL."""
        ...


class LocalArtifactStorage:
    """Writes artifacts into a directory; the URL embeds an unguessable suffix."""

    def __init__(self, directory: str | Path, url_prefix: str) -> None:
        self._directory = Path(directory)
        self._url_prefix = url_prefix.rstrip("/")

    def filename_for(self, request_id: uuid.UUID, artifact: ExportArtifact) -> str:
        return f"gdpr-export-{request_id}-{secrets.token_urlsafe(12)}.{artifact.extension}"

    async def store(self, request_id: uuid.UUID, artifact: ExportArtifact) -> str:
        filename = self.filename_for(request_id, artifact)
        path = self._directory / filename
        await asyncio.to_thread(self._write, path, artifact.content)
        logger.info("Stored export artifact %s (%s)", filename, artifact.mime_type)
        return f"{self._url_prefix}/{filename}"

    @staticmethod
    def _write(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

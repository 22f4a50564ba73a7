"""Filesystem note backend.

Each note lives in the notes directory as ``<id>.md`` (content) plus
``<id>.meta.json`` (metadata). Blocking file work runs in a worker thread
so callers on the event loop only ever await it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Mapping

from ..notes.models import (
    Document,
    DocumentMeta,
    DocumentSummary,
    default_meta,
)
from .errors import NoteNotFoundError, PersistenceError

__all__ = ["FileNoteStore"]

LOGGER = logging.getLogger(__name__)
_CONTENT_SUFFIX = ".md"
_META_SUFFIX = ".meta.json"


class FileNoteStore:
    """Persistence backend storing notes as Markdown + JSON side files."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    async def list(self) -> list[DocumentSummary]:
        return await asyncio.to_thread(self._list_sync)

    async def read(self, document_id: str) -> Document:
        return await asyncio.to_thread(self._read_sync, document_id)

    async def write(self, document_id: str, content: str, meta: DocumentMeta) -> None:
        await asyncio.to_thread(self._write_sync, document_id, content, meta)

    async def delete(self, document_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, document_id)

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _ensure_root(self) -> Path:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create notes directory {self._root}: {exc}") from exc
        return self._root

    def _list_sync(self) -> list[DocumentSummary]:
        root = self._ensure_root()
        summaries: list[DocumentSummary] = []
        for path in root.glob(f"*{_CONTENT_SUFFIX}"):
            if not path.is_file():
                continue
            document_id = path.name[: -len(_CONTENT_SUFFIX)]
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                LOGGER.warning("Skipping unreadable note %s: %s", path, exc)
                content = ""
            meta = self._load_meta(document_id, strict=False)
            summaries.append(
                DocumentSummary.from_document(Document(id=document_id, content=content, meta=meta))
            )
        summaries.sort(key=lambda summary: summary.updated_at, reverse=True)
        LOGGER.debug("FileNoteStore.list: %d note(s) in %s", len(summaries), root)
        return summaries

    def _read_sync(self, document_id: str) -> Document:
        root = self._ensure_root()
        content_path = root / f"{_safe_id(document_id)}{_CONTENT_SUFFIX}"
        try:
            content = content_path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise NoteNotFoundError(document_id) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Cannot read note '{document_id}': {exc}") from exc
        meta = self._load_meta(document_id, strict=True)
        return Document(id=document_id, content=content, meta=meta)

    def _write_sync(self, document_id: str, content: str, meta: DocumentMeta) -> None:
        root = self._ensure_root()
        stem = _safe_id(document_id)
        try:
            _atomic_write(root / f"{stem}{_CONTENT_SUFFIX}", content)
            _atomic_write(
                root / f"{stem}{_META_SUFFIX}",
                json.dumps(meta.to_dict(), indent=2, ensure_ascii=False),
            )
        except OSError as exc:
            raise PersistenceError(f"Cannot write note '{document_id}': {exc}") from exc
        LOGGER.debug("FileNoteStore.write: %s (%d chars)", document_id, len(content))

    def _delete_sync(self, document_id: str) -> None:
        stem = _safe_id(document_id)
        for suffix in (_CONTENT_SUFFIX, _META_SUFFIX):
            path = self._root / f"{stem}{suffix}"
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise PersistenceError(f"Cannot delete note '{document_id}': {exc}") from exc
        LOGGER.debug("FileNoteStore.delete: %s", document_id)

    def _load_meta(self, document_id: str, *, strict: bool) -> DocumentMeta:
        meta_path = self._root / f"{_safe_id(document_id)}{_META_SUFFIX}"
        if not meta_path.exists():
            return default_meta(document_id)
        try:
            payload = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            if strict:
                raise PersistenceError(f"Cannot read metadata for '{document_id}': {exc}") from exc
            LOGGER.warning("Metadata for %s is unreadable: %s", document_id, exc)
            return default_meta(document_id)
        if not isinstance(payload, Mapping):
            if strict:
                raise PersistenceError(f"Metadata for '{document_id}' is not an object")
            return default_meta(document_id)
        return DocumentMeta.from_dict(payload, default_title=document_id)


def _safe_id(document_id: str) -> str:
    candidate = document_id.strip()
    if not candidate or candidate in {".", ".."} or any(sep in candidate for sep in ("/", "\\")):
        raise PersistenceError(f"Invalid note id '{document_id}'")
    return candidate


def _atomic_write(path: Path, body: str) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(body, encoding="utf-8")
    tmp_path.replace(path)

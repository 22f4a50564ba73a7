"""Tests for the file-backed note store."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from brief.notes.models import DocumentMeta, PREVIEW_LENGTH, default_meta
from brief.services.errors import NoteNotFoundError, PersistenceError
from brief.services.note_store import FileNoteStore

BASE = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _meta(title: str, minutes: int) -> DocumentMeta:
    return default_meta(title, now=BASE + timedelta(minutes=minutes))


@pytest.mark.asyncio
async def test_write_then_read(tmp_path: Path) -> None:
    store = FileNoteStore(tmp_path)
    meta = _meta("Planning", 0)
    meta.add_participant("Ana")

    await store.write("2024-05-01-abcde", "# Agenda", meta)
    document = await store.read("2024-05-01-abcde")

    assert document.content == "# Agenda"
    assert document.meta == meta
    assert (tmp_path / "2024-05-01-abcde.md").read_text(encoding="utf-8") == "# Agenda"
    stored = json.loads((tmp_path / "2024-05-01-abcde.meta.json").read_text(encoding="utf-8"))
    assert stored["title"] == "Planning"
    assert stored["participants"] == ["Ana"]
    assert not list(tmp_path.glob("*.tmp"))


@pytest.mark.asyncio
async def test_list_sorts_newest_first_with_preview(tmp_path: Path) -> None:
    store = FileNoteStore(tmp_path)
    await store.write("old", "x" * 500, _meta("Old", 0))
    await store.write("new", "short", _meta("New", 30))

    summaries = await store.list()

    assert [summary.id for summary in summaries] == ["new", "old"]
    assert summaries[0].preview == "short"
    assert len(summaries[1].preview) == PREVIEW_LENGTH


@pytest.mark.asyncio
async def test_missing_meta_falls_back_to_id_title(tmp_path: Path) -> None:
    (tmp_path / "loose.md").write_text("hand written", encoding="utf-8")
    store = FileNoteStore(tmp_path)

    document = await store.read("loose")
    summaries = await store.list()

    assert document.meta.title == "loose"
    assert summaries[0].title == "loose"


@pytest.mark.asyncio
async def test_corrupt_meta_fails_read_but_not_listing(tmp_path: Path) -> None:
    (tmp_path / "bad.md").write_text("content", encoding="utf-8")
    (tmp_path / "bad.meta.json").write_text("{broken", encoding="utf-8")
    store = FileNoteStore(tmp_path)

    with pytest.raises(PersistenceError):
        await store.read("bad")
    assert [summary.title for summary in await store.list()] == ["bad"]


@pytest.mark.asyncio
async def test_read_missing_note_raises_not_found(tmp_path: Path) -> None:
    store = FileNoteStore(tmp_path)

    with pytest.raises(NoteNotFoundError) as excinfo:
        await store.read("nope")
    assert excinfo.value.document_id == "nope"


@pytest.mark.asyncio
async def test_delete_removes_files_and_is_idempotent(tmp_path: Path) -> None:
    store = FileNoteStore(tmp_path)
    await store.write("gone", "bye", _meta("Gone", 0))

    await store.delete("gone")
    await store.delete("gone")

    assert list(tmp_path.iterdir()) == []
    assert await store.list() == []


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_id", ["../escape", "a/b", "..", "  "])
async def test_unsafe_ids_are_rejected(tmp_path: Path, bad_id: str) -> None:
    store = FileNoteStore(tmp_path / "notes")

    with pytest.raises(PersistenceError):
        await store.write(bad_id, "x", default_meta())

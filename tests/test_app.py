"""Tests covering the command line entry point."""

from __future__ import annotations

import io
import json
import os
from pathlib import Path

import pytest

from brief import app
from brief.services.errors import EnhanceError
from brief.services.note_store import FileNoteStore
from brief.services.settings import SecretVault, Settings, SettingsStore
from brief.session.workspace import NotesWorkspace


@pytest.fixture(autouse=True)
def _isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith("BRIEF_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(app, "configure_logging", lambda debug=False, force=False: None)


def _run(capsys: pytest.CaptureFixture[str], tmp_path: Path, *argv: str) -> tuple[int, str, str]:
    base = [
        "--settings-path",
        str(tmp_path / "settings.json"),
        "--set",
        f"notes_dir={tmp_path / 'notes'}",
    ]
    try:
        app.main([*base, *argv])
        code = 0
    except SystemExit as exc:
        code = int(exc.code or 0)
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def test_new_append_show_list_delete(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    code, out, _ = _run(capsys, tmp_path, "new", "--title", "Kickoff")
    assert code == 0
    note_id = out.strip()

    assert _run(capsys, tmp_path, "append", note_id, "first", "point")[0] == 0
    assert _run(capsys, tmp_path, "append", note_id, "second")[0] == 0

    code, out, _ = _run(capsys, tmp_path, "show", note_id)
    assert code == 0
    assert out == "# Kickoff\n\nfirst point\n\nsecond\n"

    code, out, _ = _run(capsys, tmp_path, "list")
    assert note_id in out
    assert "Kickoff" in out

    assert _run(capsys, tmp_path, "delete", note_id)[0] == 0
    assert _run(capsys, tmp_path, "list")[1] == ""


def test_show_missing_note_exits_with_error(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    code, _, err = _run(capsys, tmp_path, "show", "2024-01-01-zzzzz")

    assert code == 1
    assert "Note '2024-01-01-zzzzz' not found" in err


def test_model_status_reports_missing(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    code, out, _ = _run(capsys, tmp_path, "model", "status")

    assert code == 0
    assert out.strip() == "missing"


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    code, out, _ = _run(capsys, tmp_path)

    assert code == 2
    assert "usage: brief" in out


def test_invalid_override_exits(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    code, _, err = _run(capsys, tmp_path, "--set", "autosave_delay=soon", "list")

    assert code == 2
    assert "Invalid --set override" in err


def test_dump_settings_redacts_secrets(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")
    store.save(Settings(openai_api_key="sk-1234567890"))

    code, out, _ = _run(capsys, tmp_path, "--set", "autosave_delay=2", "--dump-settings")

    assert code == 0
    payload = json.loads(out)
    assert payload["settings"]["openai_api_key"] == "sk*********90"
    assert payload["settings"]["autosave_delay"] == 2.0
    assert payload["meta"]["secret_backend"] == "fernet"
    assert payload["meta"]["cli_overrides"] == ["autosave_delay", "notes_dir"]


def test_coerce_cli_overrides() -> None:
    overrides = app._coerce_cli_overrides(
        ["debug_logging=on", "autosave_retries=5", "enhance_timeout=30", "local_model=llama"]
    )

    assert overrides == {
        "debug_logging": True,
        "autosave_retries": 5,
        "enhance_timeout": 30.0,
        "local_model": "llama",
    }
    with pytest.raises(ValueError):
        app._coerce_cli_overrides(["unknown=1"])
    with pytest.raises(ValueError):
        app._coerce_cli_overrides(["missing-equals"])


@pytest.mark.asyncio
async def test_enhance_command_prints_result(tmp_path: Path, enhancer, audio, bus) -> None:
    settings = Settings(notes_dir=str(tmp_path))
    notes = FileNoteStore(tmp_path)
    workspace = NotesWorkspace(notes, enhancer, audio, settings=settings, event_bus=bus)
    session = await workspace.create_note("Sync")
    session.update_content("raw notes")
    await session.flush()
    note_id = session.document_id
    out = io.StringIO()

    args = app._build_parser().parse_args(["enhance", note_id, "--mode", "summarize"])
    code = await app.run_command(args, settings, workspace=workspace, stream=out)

    assert code == 0
    assert out.getvalue() == "Enhanced\n"
    assert (await notes.read(note_id)).content == "Enhanced"


@pytest.mark.asyncio
async def test_enhance_command_failure(tmp_path: Path, enhancer, audio, bus, capsys) -> None:
    enhancer.error = EnhanceError("OpenAI API key required")
    settings = Settings(notes_dir=str(tmp_path))
    notes = FileNoteStore(tmp_path)
    workspace = NotesWorkspace(notes, enhancer, audio, settings=settings, event_bus=bus)
    session = await workspace.create_note()
    session.update_content("raw")
    await session.flush()

    args = app._build_parser().parse_args(["enhance", session.document_id])
    code = await app.run_command(args, settings, workspace=workspace, stream=io.StringIO())

    assert code == 1
    assert "OpenAI API key required" in capsys.readouterr().err


def test_load_settings_uses_store(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "s.json", vault=SecretVault(key_path=tmp_path / "k"))
    store.save(Settings(ai_provider="openai"))

    assert app.load_settings(store=store).ai_provider == "openai"

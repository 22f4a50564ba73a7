"""Command line entry point for Brief."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO

from .events import EventBus, ModelStatusChanged
from .notes.models import DEFAULT_TITLE, EnhanceMode, ModelStatus, format_timestamp
from .services.audio import LocalAudioBackend, WhisperModelStore
from .services.backends import Recorder
from .services.enhancer import EnhanceClient, EnhanceClientSettings
from .services.errors import BackendError
from .services.note_store import FileNoteStore
from .services.settings import Settings, SettingsStore, coerce_setting
from .session.coordinator import TRANSCRIPT_SEPARATOR
from .session.workspace import NotesWorkspace
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Send logs to the rotating file, echoing to stderr in debug mode."""

    level = logging.DEBUG if debug else logging.INFO
    path = logging_utils.setup_logging(level, console=debug, force=force)
    _LOGGER.debug("Logging to %s at %s", path, logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Read settings through ``store``; unreadable files yield the defaults."""

    source = store or SettingsStore(path)
    try:
        return source.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Using default settings, %s could not be read: %s", source.path, exc)
        return Settings()


def build_workspace(
    settings: Settings,
    *,
    event_bus: EventBus | None = None,
    recorder: Recorder | None = None,
) -> NotesWorkspace:
    """Wire the concrete backends into a :class:`NotesWorkspace`."""

    bus = event_bus or EventBus()
    notes = FileNoteStore(settings.notes_path)
    enhancer = EnhanceClient(
        EnhanceClientSettings(
            local_url=settings.local_ai_url,
            local_model=settings.local_model,
            openai_model=settings.openai_model,
            anthropic_model=settings.anthropic_model,
            request_timeout=settings.request_timeout,
        )
    )
    models = WhisperModelStore(settings.models_path, url=settings.whisper_model_url, event_bus=bus)
    audio = LocalAudioBackend(models, recorder=recorder)
    return NotesWorkspace(notes, enhancer, audio, settings=settings, event_bus=bus)


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `brief` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)
    debug = os.environ.get("BRIEF_DEBUG", "").strip().lower() in {"1", "true", "yes", "on", "debug"}
    configure_logging(debug)

    location = args.settings_path or os.environ.get("BRIEF_SETTINGS_PATH")
    store = SettingsStore(Path(location).expanduser() if location else None)
    try:
        overrides = _coerce_cli_overrides(args.overrides)
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    settings = load_settings(store=store, overrides=overrides)

    if args.dump_settings:
        _dump_settings(settings, store, overrides=overrides)
        return
    if not args.command:
        parser.print_help()
        raise SystemExit(2)
    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    try:
        code = asyncio.run(run_command(args, settings))
    except KeyboardInterrupt:  # pragma: no cover - interactive only
        _LOGGER.info("Interrupted")
        code = 130
    if code:
        raise SystemExit(code)


async def run_command(
    args: argparse.Namespace,
    settings: Settings,
    *,
    workspace: NotesWorkspace | None = None,
    stream: TextIO | None = None,
) -> int:
    """Run one CLI command against a workspace and close it afterwards."""

    out = stream or sys.stdout
    active = workspace or build_workspace(settings)
    try:
        return await _dispatch(args, active, out)
    except BackendError as exc:
        _LOGGER.debug("Command %s failed", args.command, exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        await active.close()


async def _dispatch(args: argparse.Namespace, workspace: NotesWorkspace, out: TextIO) -> int:
    command = args.command
    if command == "list":
        for summary in await workspace.refresh():
            out.write(f"{summary.id}  {format_timestamp(summary.updated_at)}  {summary.title}\n")
        return 0

    if command == "new":
        session = await workspace.create_note(args.title)
        out.write(f"{session.document_id}\n")
        return 0

    if command == "show":
        session = await workspace.select(args.id)
        assert session is not None
        out.write(f"# {session.title}\n\n{session.content}\n")
        return 0

    if command == "append":
        session = await workspace.select(args.id)
        assert session is not None
        text = " ".join(args.text)
        current = session.content
        session.update_content(f"{current}{TRANSCRIPT_SEPARATOR}{text}" if current else text)
        return 0

    if command == "enhance":
        await workspace.model.check()
        session = await workspace.select(args.id)
        assert session is not None
        surface = workspace.control_surface()
        surface.select_mode(args.mode)
        try:
            result = await surface.enhance()
        finally:
            surface.dispose()
        if session.last_error:
            print(f"error: {session.last_error}", file=sys.stderr)
            return 1
        if result is None:
            print("Nothing to enhance.", file=sys.stderr)
            return 0
        out.write(f"{result}\n")
        return 0

    if command == "delete":
        await workspace.delete(args.id)
        return 0

    if command == "model":
        return await _model_command(args, workspace, out)

    raise ValueError(f"Unknown command: {command}")


async def _model_command(args: argparse.Namespace, workspace: NotesWorkspace, out: TextIO) -> int:
    model = workspace.model
    status = await model.check()
    if args.model_command == "status":
        out.write(f"{status.value}\n")
        return 0

    if status is ModelStatus.READY:
        out.write("Speech model already downloaded.\n")
        return 0

    def _report(event: ModelStatusChanged) -> None:
        if event.status is ModelStatus.DOWNLOADING and event.percent:
            out.write(f"\rDownloading... {event.percent}%")
            out.flush()

    workspace.event_bus.subscribe(ModelStatusChanged, _report)
    try:
        ready = await model.download()
    finally:
        workspace.event_bus.unsubscribe(ModelStatusChanged, _report)
    out.write("\n")
    if not ready:
        print(f"error: {model.last_error or 'Model download failed'}", file=sys.stderr)
        return 1
    out.write("Speech model ready.\n")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="brief",
        description="Take meeting notes, enhance them with AI and transcribe recordings.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.brief/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    commands = parser.add_subparsers(dest="command", metavar="command")

    commands.add_parser("list", help="List notes, most recently updated first.")

    new = commands.add_parser("new", help="Create an empty note and print its id.")
    new.add_argument("--title", default=DEFAULT_TITLE)

    show = commands.add_parser("show", help="Print a note.")
    show.add_argument("id")

    append = commands.add_parser("append", help="Append a paragraph to a note.")
    append.add_argument("id")
    append.add_argument("text", nargs="+")

    enhance = commands.add_parser("enhance", help="Rewrite a note with the configured AI provider.")
    enhance.add_argument("id")
    enhance.add_argument(
        "--mode",
        default=EnhanceMode.POLISH.value,
        choices=[mode.value for mode in EnhanceMode],
    )

    delete = commands.add_parser("delete", help="Delete a note.")
    delete.add_argument("id")

    model = commands.add_parser("model", help="Inspect or download the speech model.")
    model.add_argument("model_command", choices=["status", "download"])
    return parser


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    """Turn ``KEY=VALUE`` strings from ``--set`` into typed settings values."""

    overrides: Dict[str, Any] = {}
    for item in items:
        name, sep, raw = item.partition("=")
        if not sep:
            raise ValueError(f"Override '{item}' must use KEY=VALUE syntax.")
        if not name.strip():
            raise ValueError("Override is missing a field name.")
        overrides[name.strip()] = coerce_setting(name.strip(), raw)
    return overrides


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    report = {
        "settings": settings.redacted(),
        "meta": {
            "path": str(store.path),
            "secret_backend": store.vault.strategy,
            "cli_overrides": sorted(overrides),
            "environment_variables": sorted(
                name for name in os.environ if name.startswith("BRIEF_")
            ),
        },
    }
    target = stream or sys.stdout
    target.write(json.dumps(report, indent=2) + "\n")

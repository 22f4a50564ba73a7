"""User settings for Brief and their on-disk JSON representation.

API keys never reach the settings file in clear text: they are stored as
``<field>_ciphertext`` entries encrypted with a Fernet key kept beside the
settings file. Values can be overridden per run (``--set`` on the command
line) and per environment (``BRIEF_*`` variables); environment values win.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, get_args, get_origin, get_type_hints

from cryptography.fernet import Fernet, InvalidToken

from ..notes.models import AIProvider

__all__ = [
    "SECRET_FIELDS",
    "Settings",
    "SettingsStore",
    "SecretVault",
    "coerce_setting",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

_HOME_DIR = Path.home() / ".brief"
SCHEMA_VERSION = 2
SECRET_FIELDS: tuple[str, ...] = ("openai_api_key", "anthropic_api_key")
_CIPHER_KEY = "{}_ciphertext"
_TRUTHY = frozenset({"1", "true", "yes", "on", "debug"})
_FALSY = frozenset({"0", "false", "no", "off", "disabled"})
_NULLS = frozenset({"", "none", "null"})

# Every setting can be overridden with BRIEF_<FIELD NAME IN UPPER CASE>.
_ENV_PREFIX = "BRIEF_"


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions.

    Timeouts are in seconds; ``None`` disables the bound.
    """

    notes_dir: str = str(Path.home() / "Brief")
    models_dir: str | None = None
    ai_provider: str = AIProvider.LOCAL.value
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-haiku-4-5-20251001"
    local_model: str | None = None
    local_ai_url: str = "http://localhost:8080"
    whisper_model_url: str = (
        "https://huggingface.co/ggerganov/whisper.cpp/resolve/main/ggml-base.en.bin"
    )
    autosave_delay: float = 0.8
    autosave_retries: int = 3
    request_timeout: float = 120.0
    enhance_timeout: float | None = 180.0
    transcribe_timeout: float | None = 600.0
    download_timeout: float | None = 1800.0
    debug_logging: bool = False

    @property
    def provider(self) -> AIProvider:
        return AIProvider.parse(self.ai_provider)

    @property
    def notes_path(self) -> Path:
        return Path(self.notes_dir).expanduser()

    @property
    def models_path(self) -> Path:
        if self.models_dir:
            return Path(self.models_dir).expanduser()
        return self.notes_path / "models"

    def credentials_for(self, provider: AIProvider | str | None = None) -> str | None:
        """Return the API key the transformation backend needs, if any."""

        target = self.provider if provider is None else AIProvider.parse(provider)
        key = {
            AIProvider.OPENAI: self.openai_api_key,
            AIProvider.ANTHROPIC: self.anthropic_api_key,
        }.get(target, "")
        return key or None

    def redacted(self) -> Dict[str, Any]:
        """Plain dict of the settings with API keys masked."""

        data = asdict(self)
        for name in SECRET_FIELDS:
            data[name] = redact_secret(data.get(name) or "")
        return data


def coerce_setting(name: str, raw: str) -> Any:
    """Convert ``raw`` text into the type declared for setting ``name``.

    Raises ``ValueError`` for unknown settings and unparsable values.
    """

    hints = _field_types()
    if name not in hints:
        raise ValueError(f"Unknown setting '{name}'.")
    target, optional = hints[name]
    text = raw.strip()
    if optional and text.lower() in _NULLS:
        return None
    parser: Callable[[str], Any] = _PARSERS.get(target, str)
    return parser(text)


def _parse_flag(text: str) -> bool:
    lowered = text.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(f"Cannot coerce '{text}' to a boolean.")


_PARSERS: Dict[type, Callable[[str], Any]] = {
    bool: _parse_flag,
    int: lambda text: int(text, 10),
    float: float,
}


def _field_types() -> Dict[str, tuple[Any, bool]]:
    resolved: Dict[str, tuple[Any, bool]] = {}
    for name, annotation in get_type_hints(Settings).items():
        if get_origin(annotation) is None:
            resolved[name] = (annotation, False)
            continue
        members = get_args(annotation)
        concrete = [member for member in members if member is not type(None)]
        resolved[name] = (concrete[0] if concrete else str, len(concrete) != len(members))
    return resolved


class SecretVault:
    """Fernet encryption for API keys, with the key file created on first use.

    Tokens carry a ``fernet:`` prefix so the backend can be identified later.
    """

    strategy = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_HOME_DIR / "settings.key")
        self._cipher: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        sealed = self._fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.strategy}:{sealed}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        label, _, body = token.rpartition(":")
        if label and label != self.strategy:
            LOGGER.warning("Unknown secret token prefix %s; ignoring stored key.", label)
            return ""
        try:
            return self._fernet().decrypt(body.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._read_key())
        return self._cipher

    def _read_key(self) -> bytes:
        if self._key_path.exists():
            return self._key_path.read_bytes().strip()
        self._key_path.parent.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        staging = self._key_path.with_name(self._key_path.name + ".new")
        staging.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - POSIX permissions only
            staging.chmod(0o600)
        staging.replace(self._key_path)
        LOGGER.info("Created settings encryption key at %s", self._key_path)
        return key


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON at ``path``."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or (_HOME_DIR / "settings.json")
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Build settings from disk, then ``overrides``, then the environment.

        A file from an older layout, or one holding clear-text API keys, is
        rewritten in the current layout.
        """

        stored = self._read()
        settings, rewrite = self._decode(stored) if stored else (Settings(), False)
        if stored and (rewrite or stored.get("version") != SCHEMA_VERSION):
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - read-only home directories
                LOGGER.warning("Could not upgrade settings file %s: %s", self._path, exc)

        if overrides:
            settings = _with_values(settings, overrides, origin="command line")
        return _with_values(settings, _environment_values(), origin="environment")

    def save(self, settings: Settings) -> Path:
        """Write ``settings`` atomically and return the file path."""

        document = self._encode(settings)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        staging = self._path.with_name(self._path.name + ".new")
        staging.write_text(json.dumps(document, indent=2, sort_keys=True), encoding="utf-8")
        staging.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _encode(self, settings: Settings) -> Dict[str, Any]:
        document = asdict(settings)
        for name in SECRET_FIELDS:
            secret = document.pop(name, "")
            if secret:
                document[_CIPHER_KEY.format(name)] = self._vault.encrypt(secret)
        document.update(version=SCHEMA_VERSION, secret_backend=self._vault.strategy)
        return document

    def _decode(self, document: Dict[str, Any]) -> tuple[Settings, bool]:
        known = {field.name for field in fields(Settings)}
        values = {key: value for key, value in document.items() if key in known}
        rewrite = False
        for name in SECRET_FIELDS:
            plain = values.pop(name, None)
            token = document.get(_CIPHER_KEY.format(name))
            if token:
                values[name] = self._unseal(name, token)
            elif plain:
                LOGGER.info("Found clear-text %s; it will be stored encrypted.", name)
                values[name] = str(plain)
                rewrite = True
        try:
            return Settings(**values), rewrite
        except TypeError as exc:
            LOGGER.warning("Ignoring malformed settings in %s: %s", self._path, exc)
            return Settings(), rewrite

    def _unseal(self, name: str, token: str) -> str:
        try:
            return self._vault.decrypt(token)
        except ValueError as exc:
            LOGGER.warning("Unable to decrypt %s: %s", name, exc)
            return ""

    def _read(self) -> Dict[str, Any]:
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if isinstance(document, dict):
            return document
        LOGGER.warning("Settings file %s does not contain an object", self._path)
        return {}


def _environment_values() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for field in fields(Settings):
        env_name = _ENV_PREFIX + field.name.upper()
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        try:
            values[field.name] = coerce_setting(field.name, raw)
        except ValueError:
            LOGGER.warning("Ignoring environment override %s=%r", env_name, raw)
    return values


def _with_values(settings: Settings, values: Mapping[str, Any], *, origin: str) -> Settings:
    known = {field.name for field in fields(Settings)}
    accepted = {key: value for key, value in values.items() if key in known}
    if not accepted:
        return settings
    LOGGER.debug("Applying %s overrides: %s", origin, sorted(accepted))
    return replace(settings, **accepted)


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of ``value``."""

    text = (value or "").strip()
    if len(text) <= 4:
        return "*" * len(text)
    hidden = "*" * (len(text) - 4)
    return text[:2] + hidden + text[-2:]

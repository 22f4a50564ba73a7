"""Speech model management and the recording facade used by sessions.

The speech recognizer itself is an injected :class:`~brief.services.backends.Recorder`;
this module owns the model file (presence check and streamed download) and
forwards recording calls to the recorder.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import httpx

from ..events import EventBus, ModelDownloadProgress
from ..notes.models import ModelInfo
from .backends import Recorder
from .errors import ModelDownloadError, TranscriptionError

__all__ = ["WhisperModelStore", "LocalAudioBackend", "MODEL_FILENAME"]

LOGGER = logging.getLogger(__name__)
MODEL_FILENAME = "ggml-base.en.bin"
DEFAULT_MODEL_URL = "https://huggingface.co/ggerganov/whisper.cpp/resolve/main/" + MODEL_FILENAME


class WhisperModelStore:
    """Locates and downloads the speech model file."""

    def __init__(
        self,
        models_dir: Path | str,
        *,
        url: str = DEFAULT_MODEL_URL,
        event_bus: EventBus | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._models_dir = Path(models_dir).expanduser()
        self._url = url
        self._bus = event_bus
        self._http = http_client

    @property
    def model_path(self) -> Path:
        return self._models_dir / MODEL_FILENAME

    def check(self) -> ModelInfo:
        path = self.model_path
        return ModelInfo(exists=path.is_file(), path=str(path))

    async def download(self) -> None:
        """Stream the model to a temporary file and move it into place.

        Publishes :class:`ModelDownloadProgress` whenever the server announces
        the total size.
        """

        try:
            self._models_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ModelDownloadError(f"Download failed: {exc}") from exc

        tmp_path = self._models_dir / (MODEL_FILENAME + ".tmp")
        client = self._http or httpx.AsyncClient(follow_redirects=True, timeout=None)
        owns_client = self._http is None
        LOGGER.info("Downloading speech model from %s", self._url)
        try:
            async with client.stream("GET", self._url) as response:
                if response.status_code >= 400:
                    raise ModelDownloadError(f"Download failed: HTTP {response.status_code}")
                total = _content_length(response)
                downloaded = 0
                handle = await asyncio.to_thread(tmp_path.open, "wb")
                try:
                    async for chunk in response.aiter_bytes():
                        await asyncio.to_thread(handle.write, chunk)
                        downloaded += len(chunk)
                        if total > 0:
                            self._publish_progress(downloaded, total)
                finally:
                    await asyncio.to_thread(handle.close)
            await asyncio.to_thread(tmp_path.replace, self.model_path)
        except httpx.HTTPError as exc:
            tmp_path.unlink(missing_ok=True)
            raise ModelDownloadError(f"Download failed: {exc}") from exc
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise ModelDownloadError(f"Download failed: {exc}") from exc
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        finally:
            if owns_client:
                await client.aclose()
        LOGGER.info("Speech model stored at %s", self.model_path)

    def _publish_progress(self, downloaded: int, total: int) -> None:
        if self._bus is None:
            return
        percent = min(100, int(downloaded * 100 / total))
        self._bus.publish(ModelDownloadProgress(downloaded=downloaded, total=total, percent=percent))


class LocalAudioBackend:
    """Audio backend combining the model store with an injected recorder."""

    def __init__(self, model_store: WhisperModelStore, recorder: Recorder | None = None) -> None:
        self._models = model_store
        self._recorder = recorder

    @property
    def model_store(self) -> WhisperModelStore:
        return self._models

    async def check_model(self) -> ModelInfo:
        return await asyncio.to_thread(self._models.check)

    async def download_model(self) -> None:
        await self._models.download()

    async def start_recording(self) -> None:
        recorder = self._require_recorder()
        await recorder.start()

    async def stop_and_transcribe(self) -> str:
        recorder = self._require_recorder()
        info = await self.check_model()
        if not info.exists:
            raise TranscriptionError("Speech model not downloaded")
        transcript = await recorder.stop_and_transcribe(info.path)
        return transcript.strip()

    def _require_recorder(self) -> Recorder:
        if self._recorder is None:
            raise TranscriptionError("No audio recorder is configured")
        return self._recorder


def _content_length(response: httpx.Response) -> int:
    raw = response.headers.get("content-length")
    if raw is None:
        return 0
    try:
        return max(0, int(raw))
    except ValueError:
        return 0

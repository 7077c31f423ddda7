from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict

from .errors import PlaybackError
from .graph import Mixer
from .settings import EngineSettings

_LOGGER = logging.getLogger("drumseq.output")


class OutputBackend(BaseModel):
    """A live output device pulling blocks from a mixer."""

    name: str
    open_stream: Callable[[Mixer, EngineSettings], Any]

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


def _load_sounddevice() -> OutputBackend | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        # OSError: the module imports but PortAudio is missing
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    sd: Any = sd_module

    def _open_stream(mixer: Mixer, settings: EngineSettings) -> Any:
        def _callback(outdata: Any, frames: int, _time: Any, status: Any) -> None:
            if status:
                _LOGGER.debug("Output stream status: %s", status)
            block = mixer.render(frames)
            outdata[:] = block.reshape(-1, 1).repeat(outdata.shape[1], axis=1)

        return sd.OutputStream(
            samplerate=mixer.sample_rate,
            blocksize=settings.block_size,
            channels=settings.channels,
            dtype="float32",
            callback=_callback,
        )

    return OutputBackend(name="sounddevice", open_stream=_open_stream)


def resolve_backend() -> OutputBackend:
    backend = _load_sounddevice()
    if backend is None:
        raise PlaybackError("Live playback requires sounddevice (pip install 'drumseq[audio]').")
    return backend


class LiveOutput:
    """Context manager running a mixer through the default output device."""

    def __init__(
        self,
        mixer: Mixer,
        settings: EngineSettings | None = None,
        backend: OutputBackend | None = None,
    ) -> None:
        self._mixer = mixer
        self._settings = settings or EngineSettings()
        self._backend = backend
        self._stream: Any = None

    @property
    def running(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        if self._stream is not None:
            return
        backend = self._backend or resolve_backend()
        stream = backend.open_stream(self._mixer, self._settings)
        stream.start()
        self._stream = stream
        _LOGGER.info("Live output started (%s, %d Hz)", backend.name, self._mixer.sample_rate)

    def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()

    def __enter__(self) -> LiveOutput:
        self.start()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.stop()

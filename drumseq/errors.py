from __future__ import annotations


class DrumseqError(Exception):
    """Base error for the drumseq library."""


class InvalidPatternError(DrumseqError):
    """Raised when a pattern or a pattern edit fails validation."""


class SampleDecodeError(DrumseqError):
    """Raised when a raw sample source cannot be turned into audio frames."""


class RenderError(DrumseqError):
    """Raised when a voice or sample cannot be rendered into the audio graph."""


class PlaybackError(DrumseqError):
    """Raised when no audio output backend is available."""


class PatternNotFoundError(DrumseqError, KeyError):
    """Raised when a pattern store has no pattern under the requested id."""

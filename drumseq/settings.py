from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

SAMPLE_RATE_ENV = "DRUMSEQ_SAMPLE_RATE"
BLOCK_SIZE_ENV = "DRUMSEQ_BLOCK_SIZE"
LOOKAHEAD_ENV = "DRUMSEQ_LOOKAHEAD"


class EngineSettings(BaseModel):
    """Audio engine configuration.

    `lookahead` is the gap, in seconds, between the host time a step is
    computed and the audio time it sounds at.
    """

    sample_rate: int = Field(default=44_100, ge=8_000, le=192_000)
    block_size: int = Field(default=256, ge=16, le=8_192)
    lookahead: float = Field(default=0.025, ge=0.0, le=1.0)
    channels: int = Field(default=1, ge=1, le=2)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineSettings:
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        if env.get(SAMPLE_RATE_ENV):
            values["sample_rate"] = env[SAMPLE_RATE_ENV]
        if env.get(BLOCK_SIZE_ENV):
            values["block_size"] = env[BLOCK_SIZE_ENV]
        if env.get(LOOKAHEAD_ENV):
            values["lookahead"] = env[LOOKAHEAD_ENV]
        return cls.model_validate(values)

"""Uploaded audio handling."""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass


@dataclass(frozen=True)
class SourceAudio:
    filename: str
    mime_type: str
    data: bytes

    @property
    def title(self) -> str:
        return derive_title(self.filename)


def is_audio_mime(mime_type: str | None) -> bool:
    return bool(mime_type) and mime_type.lower().startswith("audio/")


def derive_title(filename: str) -> str:
    """File name with its last extension removed."""
    return re.sub(r"\.[^/.]+$", "", filename or "")


def encode_audio(data: bytes) -> str:
    """Base64 transport encoding for inline audio."""
    return base64.b64encode(data).decode("ascii")

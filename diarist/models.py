"""Domain records shared by the gateway, the session and the store."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class SpeakerTurn(BaseModel):
    """One utterance attributed to one speaker."""

    model_config = ConfigDict(frozen=True)

    speaker: str
    text: str


class AnalysisResult(BaseModel):
    """Transcript, summary and action items produced by one analysis call."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    transcript: list[SpeakerTurn]
    summary: str
    action_items: str = Field(alias="actionItems")

    @property
    def speakers(self) -> list[str]:
        """Distinct raw speaker identifiers, sorted lexically."""
        return sorted({turn.speaker for turn in self.transcript})


class Meeting(BaseModel):
    """A saved meeting. Created once at save time, then only deleted."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    timestamp: str
    analysis: AnalysisResult

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    @property
    def created_at(self) -> datetime:
        return parse_timestamp(self.timestamp)


def utc_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    dt = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    # Stored timestamps end in "Z"; older interpreters reject it in fromisoformat.
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_local_datetime(value: str) -> str:
    """Human-readable local date/time for prompts and exports."""
    try:
        dt = parse_timestamp(value)
    except ValueError:
        return value
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")

"""In-progress analysis state: result, speaker names and the open inline editor.

The session moves through NO_ANALYSIS -> LOADING -> READY. While READY exactly
one editor may be open; opening another discards the first one's draft.
Saving folds the speaker name map into the transcript and hands back an
immutable Meeting, after which the session is empty again.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Union

from diarist.models import AnalysisResult, Meeting, SpeakerTurn, utc_timestamp


class SessionState(str, Enum):
    NO_ANALYSIS = "no_analysis"
    LOADING = "loading"
    READY = "ready"


class SessionStateError(RuntimeError):
    """An operation was attempted in a state that does not allow it."""


@dataclass(frozen=True)
class NoEditor:
    kind = "none"


@dataclass(frozen=True)
class EditingSpeaker:
    speaker_id: str
    draft: str
    kind = "speaker"


@dataclass(frozen=True)
class EditingTurn:
    index: int
    draft: str
    kind = "turn"


@dataclass(frozen=True)
class EditingSummary:
    draft: str
    kind = "summary"


@dataclass(frozen=True)
class EditingActionItems:
    draft: str
    kind = "action_items"


Editor = Union[NoEditor, EditingSpeaker, EditingTurn, EditingSummary, EditingActionItems]


@dataclass(frozen=True)
class _ReadySnapshot:
    analysis: AnalysisResult
    speakers: list[str]
    speaker_names: dict[str, str]


class AnalysisSession:
    def __init__(self) -> None:
        self.state = SessionState.NO_ANALYSIS
        self.analysis: Optional[AnalysisResult] = None
        self.speakers: list[str] = []
        self.speaker_names: dict[str, str] = {}
        self.editor: Editor = NoEditor()
        self._generation = 0
        self._previous: Optional[_ReadySnapshot] = None

    # ── Lifecycle ──────────────────────────────────────────────────────

    @property
    def generation(self) -> int:
        return self._generation

    def begin_loading(self) -> int:
        """Enter LOADING and return the token the result must present."""
        if self.state == SessionState.LOADING:
            raise SessionStateError("An analysis is already in progress.")
        self._previous = None
        if self.state == SessionState.READY and self.analysis is not None:
            self._previous = _ReadySnapshot(
                self.analysis, list(self.speakers), dict(self.speaker_names)
            )
        self._clear()
        self.state = SessionState.LOADING
        self._generation += 1
        return self._generation

    def complete(self, token: int, analysis: AnalysisResult) -> bool:
        """Enter READY with a fresh identity speaker map. False if the token is stale."""
        if token != self._generation or self.state != SessionState.LOADING:
            return False
        self._previous = None
        self.analysis = analysis
        self.speakers = analysis.speakers
        self.speaker_names = {speaker: speaker for speaker in self.speakers}
        self.editor = NoEditor()
        self.state = SessionState.READY
        return True

    def fail(self, token: int) -> bool:
        """Return to the state held before begin_loading(). False if the token is stale."""
        if token != self._generation or self.state != SessionState.LOADING:
            return False
        previous, self._previous = self._previous, None
        if previous is None:
            self.state = SessionState.NO_ANALYSIS
            return True
        self.analysis = previous.analysis
        self.speakers = previous.speakers
        self.speaker_names = previous.speaker_names
        self.editor = NoEditor()
        self.state = SessionState.READY
        return True

    def reset(self) -> None:
        self._clear()
        self._previous = None
        self.state = SessionState.NO_ANALYSIS
        # Invalidate any outstanding call.
        self._generation += 1

    def _clear(self) -> None:
        self.analysis = None
        self.speakers = []
        self.speaker_names = {}
        self.editor = NoEditor()

    def _require_ready(self) -> AnalysisResult:
        if self.state != SessionState.READY or self.analysis is None:
            raise SessionStateError("There is no analysis to edit.")
        return self.analysis

    # ── Editors ────────────────────────────────────────────────────────

    def open_speaker_editor(self, speaker_id: str) -> Editor:
        self._require_ready()
        if speaker_id not in self.speaker_names:
            raise KeyError(speaker_id)
        self.editor = EditingSpeaker(speaker_id, self.speaker_names[speaker_id])
        return self.editor

    def open_turn_editor(self, index: int) -> Editor:
        analysis = self._require_ready()
        if not 0 <= index < len(analysis.transcript):
            raise IndexError(index)
        self.editor = EditingTurn(index, analysis.transcript[index].text)
        return self.editor

    def open_summary_editor(self) -> Editor:
        analysis = self._require_ready()
        self.editor = EditingSummary(analysis.summary)
        return self.editor

    def open_action_items_editor(self) -> Editor:
        analysis = self._require_ready()
        self.editor = EditingActionItems(analysis.action_items)
        return self.editor

    def update_draft(self, text: str) -> Editor:
        self._require_ready()
        if isinstance(self.editor, NoEditor):
            raise SessionStateError("No editor is open.")
        self.editor = replace(self.editor, draft=text)
        return self.editor

    def cancel_edit(self) -> None:
        self.editor = NoEditor()

    def commit_edit(self) -> None:
        """Apply the open editor's draft, then close it."""
        editor, self.editor = self.editor, NoEditor()
        if isinstance(editor, NoEditor):
            return
        analysis = self._require_ready()
        value = editor.draft.strip()

        if isinstance(editor, EditingSpeaker):
            if value:
                self.speaker_names = {**self.speaker_names, editor.speaker_id: value}
        elif isinstance(editor, EditingTurn):
            transcript = [
                SpeakerTurn(speaker=turn.speaker, text=value) if i == editor.index else turn
                for i, turn in enumerate(analysis.transcript)
            ]
            self.analysis = analysis.model_copy(update={"transcript": transcript})
        elif isinstance(editor, EditingSummary):
            self.analysis = analysis.model_copy(update={"summary": value})
        elif isinstance(editor, EditingActionItems):
            self.analysis = analysis.model_copy(update={"action_items": value})

    # ── Save ───────────────────────────────────────────────────────────

    def display_name(self, speaker_id: str) -> str:
        return self.speaker_names.get(speaker_id) or speaker_id

    def finalize(
        self,
        title: str,
        existing_ids: set[str],
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        timestamp: Optional[str] = None,
    ) -> Meeting:
        """Fold speaker names into the transcript and build the Meeting record."""
        analysis = self._require_ready()
        transcript = [
            SpeakerTurn(speaker=self.display_name(turn.speaker), text=turn.text)
            for turn in analysis.transcript
        ]
        meeting_id = id_factory()
        while meeting_id in existing_ids:
            meeting_id = id_factory()

        meeting = Meeting(
            id=meeting_id,
            title=title,
            timestamp=timestamp or utc_timestamp(),
            analysis=analysis.model_copy(update={"transcript": transcript}),
        )
        self.reset()
        return meeting

    def to_dict(self) -> dict:
        editor: dict = {"kind": self.editor.kind}
        if isinstance(self.editor, EditingSpeaker):
            editor["speaker_id"] = self.editor.speaker_id
        elif isinstance(self.editor, EditingTurn):
            editor["index"] = self.editor.index
        if not isinstance(self.editor, NoEditor):
            editor["draft"] = self.editor.draft

        analysis = None
        if self.analysis is not None:
            analysis = self.analysis.model_dump(mode="json", by_alias=True)
        return {
            "state": self.state.value,
            "analysis": analysis,
            "speakers": [
                {"id": speaker, "name": self.display_name(speaker)} for speaker in self.speakers
            ],
            "editor": editor,
        }

"""Application controller: wires the session, the gateway and the store together.

One controller serves the single local user. State changes happen under a
re-entrant lock; the lock is never held across a gateway call, so the loading
flags are what keep a second analyze/ask from starting while one is out.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from diarist.errors import InvalidInputError, OperationInProgressError
from diarist.models import Meeting, format_local_datetime, parse_timestamp
from diarist.services.analysis_session import AnalysisSession, SessionState, SessionStateError
from diarist.services.audio import SourceAudio, encode_audio, is_audio_mime
from diarist.services.llm import MeetingGateway
from diarist.services.meeting_store import MeetingStore

VIEWS = ("analyze", "qa")
DEFAULT_MODELS = {
    "flash": "gemini-3-flash-preview",
    "pro": "gemini-3-pro-preview",
}

SAVE_WARNING = "Could not save meetings. Your changes might not persist."
NO_FILE_ERROR = "Please select an audio file first."
QA_INPUT_ERROR = "Please select at least one meeting and ask a question."


class MeetingController:
    def __init__(
        self,
        store: MeetingStore,
        gateway: MeetingGateway,
        models: Optional[dict[str, str]] = None,
        default_model: str = "flash",
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._models = dict(models or DEFAULT_MODELS)
        if default_model not in self._models:
            raise ValueError(f"Unknown default model: {default_model}")
        self._lock = threading.RLock()
        self._logger = logging.getLogger("diarist.controller")

        self.view = "analyze"
        self.error: Optional[str] = None
        self.selected_model = default_model
        self.source_audio: Optional[SourceAudio] = None
        self.session = AnalysisSession()

        self.meetings: list[Meeting] = []
        self.selected_ids: set[str] = set()
        self.question = ""
        self.answer: Optional[str] = None
        self.is_answering = False

    # ── Startup & shared state ─────────────────────────────────────────

    def load(self) -> None:
        meetings, warning = self._store.load()
        with self._lock:
            self.meetings = meetings
            self.selected_ids = set()
            if warning:
                self.error = warning

    def _fail(self, message: str) -> None:
        self.error = message
        self._logger.warning("Error: %s", message)

    def _persist(self) -> None:
        if not self._store.save(self.meetings):
            self._fail(SAVE_WARNING)

    def clear_error(self) -> None:
        with self._lock:
            self.error = None

    def set_view(self, view: str) -> None:
        if view not in VIEWS:
            raise InvalidInputError(f"Unknown view: {view}")
        with self._lock:
            self.view = view

    def select_model(self, model: str) -> None:
        if model not in self._models:
            raise InvalidInputError(f"Unknown model: {model}")
        with self._lock:
            self.selected_model = model

    @property
    def model_id(self) -> str:
        return self._models[self.selected_model]

    # ── File selection ─────────────────────────────────────────────────

    def select_file(
        self, filename: str, mime_type: Optional[str], data: bytes, source: str = "picker"
    ) -> None:
        with self._lock:
            if self.session.state == SessionState.LOADING:
                raise OperationInProgressError("An analysis is in progress.")
            if not is_audio_mime(mime_type):
                verb = "drop" if source == "drop" else "select"
                self._fail(f"Please {verb} a valid audio file.")
                raise InvalidInputError(self.error)
            self.source_audio = SourceAudio(filename=filename, mime_type=mime_type, data=data)
            self.error = None
            self._logger.info(
                "Audio selected: name=%s mime=%s bytes=%d source=%s",
                filename,
                mime_type,
                len(data),
                source,
            )

    # ── Analysis ───────────────────────────────────────────────────────

    def analyze(self) -> None:
        """Run a first analysis, or redo the current one, on the selected audio."""
        with self._lock:
            if self.session.state == SessionState.LOADING:
                raise OperationInProgressError("An analysis is already in progress.")
            if self.source_audio is None:
                self._fail(NO_FILE_ERROR)
                raise InvalidInputError(NO_FILE_ERROR)
            self.error = None
            audio = self.source_audio
            model_id = self.model_id
            token = self.session.begin_loading()

        try:
            encoded = encode_audio(audio.data)
            result = self._gateway.analyze(encoded, audio.mime_type, model_id)
        except Exception as exc:
            with self._lock:
                if self.session.fail(token):
                    self._fail(f"Failed to analyze audio. {exc}")
            raise

        with self._lock:
            if not self.session.complete(token, result):
                self._logger.info("Discarding stale analysis result for %s", audio.filename)

    def redo(self) -> None:
        with self._lock:
            if self.session.state != SessionState.READY:
                raise SessionStateError("There is no analysis to redo.")
        self.analyze()

    def reset(self) -> None:
        with self._lock:
            if self.session.state == SessionState.LOADING:
                raise OperationInProgressError("An analysis is in progress.")
            self.source_audio = None
            self.error = None
            self.session.reset()

    def open_editor(self, kind: str, target: Optional[str | int] = None) -> None:
        with self._lock:
            if kind == "speaker":
                self.session.open_speaker_editor(str(target))
            elif kind == "turn":
                try:
                    index = int(target)
                except (TypeError, ValueError) as exc:
                    raise InvalidInputError("A turn index is required.") from exc
                self.session.open_turn_editor(index)
            elif kind == "summary":
                self.session.open_summary_editor()
            elif kind == "action_items":
                self.session.open_action_items_editor()
            else:
                raise InvalidInputError(f"Unknown editor: {kind}")

    def update_draft(self, text: str) -> None:
        with self._lock:
            self.session.update_draft(text)

    def commit_edit(self) -> None:
        with self._lock:
            self.session.commit_edit()

    def cancel_edit(self) -> None:
        with self._lock:
            self.session.cancel_edit()

    def save_meeting(self) -> Meeting:
        with self._lock:
            if self.session.state != SessionState.READY or self.source_audio is None:
                raise SessionStateError("There is no analysis to save.")
            self.error = None
            meeting = self.session.finalize(
                title=self.source_audio.title,
                existing_ids={m.id for m in self.meetings},
            )
            self.source_audio = None
            self.meetings = [*self.meetings, meeting]
            self._logger.info("Meeting saved: id=%s title=%s", meeting.id, meeting.title)
            self._persist()
            return meeting

    # ── Saved meetings & Q&A ───────────────────────────────────────────

    def list_meetings(self) -> list[Meeting]:
        """Saved meetings, newest first."""
        with self._lock:
            meetings = list(self.meetings)

        def sort_key(meeting: Meeting) -> float:
            try:
                return parse_timestamp(meeting.timestamp).timestamp()
            except ValueError:
                return float("-inf")

        return sorted(meetings, key=sort_key, reverse=True)

    def get_meeting(self, meeting_id: str) -> Meeting:
        with self._lock:
            for meeting in self.meetings:
                if meeting.id == meeting_id:
                    return meeting
        raise KeyError(meeting_id)

    def toggle_selection(self, meeting_id: str) -> bool:
        """Flip a meeting in or out of the Q&A context. Returns the new state."""
        with self._lock:
            self.get_meeting(meeting_id)
            if meeting_id in self.selected_ids:
                self.selected_ids.discard(meeting_id)
                return False
            self.selected_ids.add(meeting_id)
            return True

    def delete_meeting(self, meeting_id: str) -> None:
        with self._lock:
            self.get_meeting(meeting_id)
            self.error = None
            self.meetings = [m for m in self.meetings if m.id != meeting_id]
            self.selected_ids.discard(meeting_id)
            self._logger.info("Meeting deleted: id=%s", meeting_id)
            self._persist()

    def set_question(self, question: str) -> None:
        with self._lock:
            self.question = question

    def ask(self, question: Optional[str] = None) -> str:
        with self._lock:
            if self.is_answering:
                raise OperationInProgressError("A question is already being answered.")
            if question is not None:
                self.question = question
            if not self.question.strip() or not self.selected_ids:
                self._fail(QA_INPUT_ERROR)
                raise InvalidInputError(QA_INPUT_ERROR)
            self.error = None
            self.is_answering = True
            self.answer = None
            selected = [m for m in self.meetings if m.id in self.selected_ids]
            prompt_question = self.question
            model_id = self.model_id

        try:
            answer = self._gateway.answer(prompt_question, selected, model_id)
        except Exception as exc:
            with self._lock:
                self._fail(f"Failed to get answer. {exc}")
            raise
        finally:
            with self._lock:
                self.is_answering = False

        with self._lock:
            self.answer = answer
        return answer

    # ── Export ─────────────────────────────────────────────────────────

    def export_markdown(self, meeting_id: str) -> str:
        meeting = self.get_meeting(meeting_id)
        analysis = meeting.analysis
        speakers = sorted({turn.speaker for turn in analysis.transcript})

        lines = [
            f"# {meeting.title}",
            "",
            f"**Date:** {format_local_datetime(meeting.timestamp)}",
            "",
        ]
        if analysis.summary:
            lines.extend(["## Summary", "", analysis.summary, ""])
        if analysis.action_items:
            lines.extend(["## Action Items", "", analysis.action_items, ""])
        if speakers:
            lines.append("## Speakers")
            lines.extend(f"- {speaker}" for speaker in speakers)
            lines.append("")
        if analysis.transcript:
            lines.append("## Transcript")
            lines.append("")
            lines.extend(f"**{turn.speaker}:** {turn.text}" for turn in analysis.transcript)
        return "\n".join(lines)

    # ── Client state ───────────────────────────────────────────────────

    def snapshot(self) -> dict:
        with self._lock:
            audio = None
            if self.source_audio is not None:
                audio = {
                    "filename": self.source_audio.filename,
                    "mime_type": self.source_audio.mime_type,
                    "size": len(self.source_audio.data),
                }
            return {
                "view": self.view,
                "error": self.error,
                "model": self.selected_model,
                "models": dict(self._models),
                "audio": audio,
                "analysis": self.session.to_dict(),
                "qa": {
                    "selected_ids": sorted(self.selected_ids),
                    "question": self.question,
                    "answer": self.answer,
                    "is_answering": self.is_answering,
                },
            }

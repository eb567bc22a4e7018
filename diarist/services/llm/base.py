from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from diarist.errors import InvalidInputError
from diarist.models import AnalysisResult, Meeting, format_local_datetime, parse_timestamp


class GatewayError(RuntimeError):
    pass


class GatewayTransportError(GatewayError):
    """The remote call failed or came back empty."""


class GatewayValidationError(GatewayError):
    """The remote call succeeded but the payload has the wrong shape."""


# Structured-output schema in the Gemini REST dialect.
ANALYSIS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "transcript": {
            "type": "ARRAY",
            "description": (
                "The full transcript of the audio, with each part attributed "
                "to a specific speaker."
            ),
            "items": {
                "type": "OBJECT",
                "properties": {
                    "speaker": {
                        "type": "STRING",
                        "description": (
                            "The identified speaker. Use their actual name if it is "
                            "mentioned in the audio (e.g. 'Alice', 'Bob'). Otherwise "
                            "use a generic label like 'Speaker 1'."
                        ),
                    },
                    "text": {
                        "type": "STRING",
                        "description": "The transcribed text spoken by the speaker.",
                    },
                },
                "required": ["speaker", "text"],
            },
        },
        "summary": {
            "type": "STRING",
            "description": (
                "A concise summary of the key discussion points, formatted as a "
                "markdown bulleted list."
            ),
        },
        "actionItems": {
            "type": "STRING",
            "description": (
                "Actionable items, tasks or instructions mentioned during the "
                "meeting, formatted as a markdown bulleted list."
            ),
        },
    },
    "required": ["transcript", "summary", "actionItems"],
}

REQUIRED_ANALYSIS_FIELDS = ("transcript", "summary", "actionItems")

NOT_FOUND_ANSWER = "The answer to this question cannot be found in the selected meetings."


class MeetingGateway(ABC):
    @abstractmethod
    def analyze(self, audio_base64: str, mime_type: str, model_id: str) -> AnalysisResult:
        """Transcribe, diarize and summarize one audio file."""
        raise NotImplementedError

    @abstractmethod
    def answer(self, question: str, meetings: list[Meeting], model_id: str) -> str:
        """Answer a question from the transcripts of the given meetings."""
        raise NotImplementedError


class BaseGatewayProvider(MeetingGateway):
    """Base implementation with shared prompts, request shaping and response validation.

    Subclasses only need to implement _call_api() for their specific API client.
    """

    PROMPTS = {
        "analyze": (
            "You are an expert meeting assistant. Analyze the provided audio file.\n"
            "1. Perform speaker diarization to tell the speakers apart. Identify "
            "speakers by their actual names whenever those names are mentioned in "
            "the conversation. When a speaker's name is never mentioned, use a "
            "generic label such as 'Speaker 1', 'Speaker 2', numbered in order of "
            "first appearance.\n"
            "2. Transcribe the entire conversation verbatim.\n"
            "3. From the full transcript, write a concise summary of the key "
            "discussion points.\n"
            "4. Extract every action item, instruction or task that was mentioned.\n\n"
            "Return a single JSON object that conforms to the provided schema. "
            'Format the summary and the action items as markdown bullet points (e.g. "* Point 1").'
        ),
        "answer": (
            "You are an AI assistant specialized in analyzing meeting transcripts.\n"
            "Answer the user's question using *only* the information contained in "
            "the meeting transcripts below. Do not use outside knowledge and do not "
            "make assumptions beyond what is written.\n"
            'If the answer is not in the transcripts, reply exactly: "{not_found}"\n\n'
            "IMPORTANT RULE: the meetings are listed in chronological order. When "
            "meetings contain conflicting information or decisions, the most recent "
            "meeting wins; its agreement is the one currently valid.\n\n"
            "Here are the transcripts:\n"
            "{context}\n\n"
            'Now answer the following question: "{question}"'
        ),
    }

    def __init__(self, logger_name: str = "diarist.gateway") -> None:
        self._logger = logging.getLogger(logger_name)

    @abstractmethod
    def _call_api(
        self,
        parts: list[dict],
        model_id: str,
        response_schema: Optional[dict] = None,
    ) -> str:
        """Send one generateContent request and return the raw response text.

        Args:
            parts: Content parts (inline audio and/or text) for a single user turn
            model_id: The model variant to call
            response_schema: When set, demand JSON output conforming to this schema

        Returns:
            The response text, possibly empty

        Raises:
            GatewayTransportError: If the remote call fails
        """
        raise NotImplementedError

    @staticmethod
    def _strip_markdown_code_blocks(text: str) -> str:
        """Remove markdown code block wrappers from text."""
        text = text.strip()
        if not text.startswith("```"):
            return text

        lines = text.split("\n")
        json_lines = []
        in_block = False
        for line in lines:
            if line.startswith("```"):
                in_block = not in_block
                continue
            json_lines.append(line)
        return "\n".join(json_lines).strip()

    # ---- Audio analysis ----

    def analyze(self, audio_base64: str, mime_type: str, model_id: str) -> AnalysisResult:
        if not audio_base64:
            raise InvalidInputError("No audio data to analyze.")
        if not (mime_type or "").startswith("audio/"):
            raise InvalidInputError(f"Unsupported media type: {mime_type or 'unknown'}")

        parts = [
            {"inline_data": {"mime_type": mime_type, "data": audio_base64}},
            {"text": self.PROMPTS["analyze"]},
        ]
        started = time.monotonic()
        self._logger.info(
            "Analyze: model=%s mime=%s payload_chars=%d", model_id, mime_type, len(audio_base64)
        )
        content = self._call_api(parts, model_id, response_schema=ANALYSIS_SCHEMA)
        if not content or not content.strip():
            raise GatewayTransportError("Received an empty response from the API.")

        result = self.parse_analysis(content)
        self._logger.info(
            "Analyze done: model=%s turns=%d speakers=%d elapsed=%.1fs",
            model_id,
            len(result.transcript),
            len(result.speakers),
            time.monotonic() - started,
        )
        return result

    def parse_analysis(self, content: str) -> AnalysisResult:
        """Validate a structured analysis payload; never returns a partial result."""
        text = self._strip_markdown_code_blocks(content)
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            self._logger.warning("Non-JSON analysis response: %s", text[:500])
            raise GatewayValidationError("The API response is not valid JSON.") from exc

        if not isinstance(parsed, dict):
            raise GatewayValidationError(
                f"Expected a JSON object, got {type(parsed).__name__}."
            )

        missing = [key for key in REQUIRED_ANALYSIS_FIELDS if parsed.get(key) is None]
        if missing:
            self._logger.warning("Analysis response missing fields: %s", missing)
            raise GatewayValidationError(
                f"The API response is missing required fields: {', '.join(missing)}."
            )

        try:
            return AnalysisResult.model_validate(parsed)
        except ValidationError as exc:
            self._logger.warning("Malformed analysis response: %s", exc)
            raise GatewayValidationError(
                "The API response does not match the expected transcript shape."
            ) from exc

    # ---- Question answering ----

    @staticmethod
    def _chronological_key(meeting: Meeting) -> datetime:
        try:
            return parse_timestamp(meeting.timestamp)
        except ValueError:
            return datetime.min.replace(tzinfo=timezone.utc)

    @staticmethod
    def format_meeting_block(meeting: Meeting) -> str:
        """Render one meeting's transcript between labelled start/end markers."""
        lines = [
            "---",
            f'START OF TRANSCRIPT FOR MEETING: "{meeting.title}" '
            f"(Date: {format_local_datetime(meeting.timestamp)})",
        ]
        lines.extend(f"{turn.speaker}: {turn.text}" for turn in meeting.analysis.transcript)
        lines.append(f'END OF TRANSCRIPT FOR MEETING: "{meeting.title}"')
        lines.append("---")
        return "\n".join(lines)

    @classmethod
    def build_context(cls, meetings: list[Meeting]) -> str:
        """Concatenate meeting blocks, oldest first."""
        ordered = sorted(meetings, key=cls._chronological_key)
        return "\n\n".join(cls.format_meeting_block(meeting) for meeting in ordered)

    def build_answer_prompt(self, question: str, meetings: list[Meeting]) -> str:
        return self.PROMPTS["answer"].format(
            not_found=NOT_FOUND_ANSWER,
            context=self.build_context(meetings),
            question=question,
        )

    def answer(self, question: str, meetings: list[Meeting], model_id: str) -> str:
        if not meetings:
            raise InvalidInputError("At least one meeting is required to answer a question.")
        if not question or not question.strip():
            raise InvalidInputError("A question is required.")

        prompt = self.build_answer_prompt(question, meetings)
        self._logger.info(
            "Answer: model=%s meetings=%d question='%s' prompt_chars=%d",
            model_id,
            len(meetings),
            question[:50],
            len(prompt),
        )
        content = self._call_api([{"text": prompt}], model_id)
        if not content or not content.strip():
            raise GatewayTransportError("Received an empty response from the AI.")
        return content

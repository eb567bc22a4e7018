import json

import pytest

from diarist.models import AnalysisResult, Meeting, SpeakerTurn
from diarist.services.controller import MeetingController
from diarist.services.llm.base import BaseGatewayProvider
from diarist.services.meeting_store import MeetingStore, MemoryKeyValueStore


class FakeGateway(BaseGatewayProvider):
    """Gateway whose transport returns canned texts (or raises canned errors)."""

    def __init__(self, responses=None):
        super().__init__(logger_name="diarist.gateway.fake")
        self.responses = list(responses or [])
        self.calls = []

    def _call_api(self, parts, model_id, response_schema=None):
        self.calls.append(
            {"parts": parts, "model_id": model_id, "response_schema": response_schema}
        )
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def analysis_payload(turns, summary="* Discussed the roadmap", action_items="* Ship it"):
    return json.dumps(
        {
            "transcript": [{"speaker": speaker, "text": text} for speaker, text in turns],
            "summary": summary,
            "actionItems": action_items,
        }
    )


def make_meeting(meeting_id, title, timestamp, turns):
    return Meeting(
        id=meeting_id,
        title=title,
        timestamp=timestamp,
        analysis=AnalysisResult(
            transcript=[SpeakerTurn(speaker=s, text=t) for s, t in turns],
            summary="* summary",
            action_items="* action",
        ),
    )


TWO_SPEAKERS = [
    ("Speaker 2", "Morning, shall we start?"),
    ("Speaker 1", "Yes, first item is the budget."),
    ("Speaker 2", "We are over by ten percent."),
]


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv):
    return MeetingStore(kv)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def controller(store, gateway):
    ctrl = MeetingController(store, gateway)
    ctrl.load()
    return ctrl


@pytest.fixture
def ready_controller(controller, gateway):
    gateway.responses.append(analysis_payload(TWO_SPEAKERS))
    controller.select_file("standup.mp3", "audio/mpeg", b"ID3-fake-audio")
    controller.analyze()
    return controller

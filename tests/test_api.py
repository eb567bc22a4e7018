import json
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from diarist.errors import ConfigurationError
from diarist.main import create_app
from diarist.services.llm import GatewayTransportError, GeminiProvider

from conftest import TWO_SPEAKERS, FakeGateway, analysis_payload

AUDIO = ("standup.mp3", b"ID3-fake-audio", "audio/mpeg")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(tmp_path, gateway):
    app = create_app(cwd=str(tmp_path), gateway=gateway)
    return TestClient(app)


def _analyze(client, gateway):
    gateway.responses.append(analysis_payload(TWO_SPEAKERS))
    assert client.post("/api/analysis/file", files={"file": AUDIO}).status_code == 200
    response = client.post("/api/analysis/run")
    assert response.status_code == 200
    return response.json()


def test_missing_api_key_fails_startup(tmp_path, monkeypatch):
    monkeypatch.delenv("API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        create_app(cwd=str(tmp_path))


def test_api_key_builds_gemini_gateway(tmp_path, monkeypatch):
    monkeypatch.setenv("API_KEY", "test-key")
    app = create_app(cwd=str(tmp_path))
    assert isinstance(app.state.controller._gateway, GeminiProvider)


def test_health_and_root(client):
    assert client.get("/api/health").json()["status"] == "ok"
    assert client.get("/").json()["message"] == "Diarist API running"


def test_initial_state(client):
    state = client.get("/api/state").json()
    assert state["view"] == "analyze"
    assert state["model"] == "flash"
    assert state["error"] is None
    assert state["audio"] is None
    assert state["analysis"]["state"] == "no_analysis"


def test_view_and_model_selection(client):
    assert client.put("/api/view", json={"view": "qa"}).json()["view"] == "qa"
    assert client.put("/api/model", json={"model": "pro"}).json()["model"] == "pro"
    assert client.put("/api/model", json={"model": "ultra"}).status_code == 400


def test_non_audio_drop_is_rejected(client):
    response = client.post(
        "/api/analysis/file",
        files={"file": ("notes.pdf", b"%PDF", "application/pdf")},
        data={"source": "drop"},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Please drop a valid audio file."
    assert client.get("/api/state").json()["error"] == "Please drop a valid audio file."

    assert client.delete("/api/error").json()["error"] is None


def test_run_without_file_is_rejected(client):
    assert client.post("/api/analysis/run").status_code == 400


def test_redo_without_analysis_conflicts(client):
    assert client.post("/api/analysis/redo").status_code == 409


def test_gateway_failure_maps_to_bad_gateway(client, gateway):
    gateway.responses.append(GatewayTransportError("Gemini API error: 500"))
    client.post("/api/analysis/file", files={"file": AUDIO})

    response = client.post("/api/analysis/run")

    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to analyze audio. Gemini API error: 500"
    assert client.get("/api/analysis").json()["state"] == "no_analysis"


def test_editor_endpoints(client, gateway):
    state = _analyze(client, gateway)
    assert state["analysis"]["state"] == "ready"
    assert state["audio"]["filename"] == "standup.mp3"

    opened = client.post("/api/analysis/editor", json={"kind": "turn", "target": 2}).json()
    assert opened["editor"] == {"kind": "turn", "index": 2, "draft": TWO_SPEAKERS[2][1]}

    client.patch("/api/analysis/editor", json={"draft": "We are over by five percent."})
    committed = client.post("/api/analysis/editor/commit").json()
    assert committed["editor"] == {"kind": "none"}
    assert committed["analysis"]["transcript"][2]["text"] == "We are over by five percent."

    client.post("/api/analysis/editor", json={"kind": "summary"})
    client.patch("/api/analysis/editor", json={"draft": "discarded"})
    cancelled = client.delete("/api/analysis/editor").json()
    assert cancelled["analysis"]["summary"] == "* Discussed the roadmap"

    missing = client.post("/api/analysis/editor", json={"kind": "speaker", "target": "Speaker 7"})
    assert missing.status_code == 404
    bad_kind = client.post("/api/analysis/editor", json={"kind": "title"})
    assert bad_kind.status_code == 400


def test_reset_discards_analysis(client, gateway):
    _analyze(client, gateway)
    state = client.post("/api/analysis/reset").json()
    assert state["audio"] is None
    assert state["analysis"]["state"] == "no_analysis"
    assert client.post("/api/analysis/save").status_code == 409


def test_full_flow_save_ask_export_delete(client, gateway):
    _analyze(client, gateway)
    client.post("/api/analysis/editor", json={"kind": "speaker", "target": "Speaker 1"})
    client.patch("/api/analysis/editor", json={"draft": "Ana"})
    state = client.post("/api/analysis/editor/commit").json()
    assert {"id": "Speaker 1", "name": "Ana"} in state["speakers"]

    saved = client.post("/api/analysis/save").json()
    meeting_id = saved["saved_meeting"]["id"]
    assert saved["saved_meeting"]["title"] == "standup"
    assert saved["analysis"]["state"] == "no_analysis"

    listing = client.get("/api/meetings").json()
    assert [item["id"] for item in listing] == [meeting_id]
    assert listing[0]["selected"] is False

    record = client.get(f"/api/meetings/{meeting_id}").json()
    assert record["analysis"]["transcript"][1]["speaker"] == "Ana"
    assert "actionItems" in record["analysis"]

    assert client.post(f"/api/meetings/{meeting_id}/selection").json()["selected"] is True
    gateway.responses.append("The budget is over by ten percent.")
    answer = client.post("/api/qa/ask", json={"question": "How is the budget?"})
    assert answer.json() == {"answer": "The budget is over by ten percent."}
    assert client.get("/api/state").json()["qa"]["answer"] == "The budget is over by ten percent."

    export = client.get(f"/api/meetings/{meeting_id}/export")
    assert export.headers["content-type"].startswith("text/markdown")
    assert "**Ana:** Yes, first item is the budget." in export.text

    after_delete = client.delete(f"/api/meetings/{meeting_id}").json()
    assert after_delete["qa"]["selected_ids"] == []
    assert client.get("/api/meetings").json() == []
    assert client.get(f"/api/meetings/{meeting_id}").status_code == 404


def test_ask_without_selection_is_rejected(client, gateway):
    client.put("/api/qa/question", json={"question": "Anything?"})
    response = client.post("/api/qa/ask", json={})
    assert response.status_code == 400
    assert gateway.calls == []


def test_unknown_meeting_selection_is_not_found(client):
    assert client.post("/api/meetings/nope/selection").status_code == 404


def test_saved_meetings_survive_restart(tmp_path, gateway):
    client = TestClient(create_app(cwd=str(tmp_path), gateway=gateway))
    _analyze(client, gateway)
    meeting_id = client.post("/api/analysis/save").json()["saved_meeting"]["id"]

    restarted = TestClient(create_app(cwd=str(tmp_path), gateway=FakeGateway()))
    assert [item["id"] for item in restarted.get("/api/meetings").json()] == [meeting_id]


def test_reset_and_upload_conflict_while_analysis_loading(tmp_path, gateway):
    app = create_app(cwd=str(tmp_path), gateway=gateway)
    client = TestClient(app)
    client.post("/api/analysis/file", files={"file": AUDIO})
    app.state.controller.session.begin_loading()

    assert client.post("/api/analysis/reset").status_code == 409
    assert client.post("/api/analysis/file", files={"file": AUDIO}).status_code == 409
    assert client.post("/api/analysis/run").status_code == 409
    assert gateway.calls == []


def test_ask_conflicts_while_answering(tmp_path, gateway):
    app = create_app(cwd=str(tmp_path), gateway=gateway)
    client = TestClient(app)
    app.state.controller.is_answering = True

    response = client.post("/api/qa/ask", json={"question": "Anything?"})

    assert response.status_code == 409
    assert gateway.calls == []


@patch("diarist.services.llm.gemini_provider.requests.post")
def test_gemini_non_object_body_maps_to_bad_gateway(mock_post, tmp_path):
    mock_post.return_value = MagicMock(
        status_code=200, text="[]", json=MagicMock(return_value=["unexpected"])
    )
    client = TestClient(create_app(cwd=str(tmp_path), gateway=GeminiProvider(api_key="k")))
    client.post("/api/analysis/file", files={"file": AUDIO})

    response = client.post("/api/analysis/run")

    assert response.status_code == 502
    assert response.json()["detail"].endswith("unexpected response.")


def test_custom_data_dir_from_config(tmp_path, gateway):
    custom = tmp_path / "archive"
    custom.mkdir()
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "config.json").write_text(
        json.dumps({"data_dir": str(custom), "models": {"pro": "gemini-custom"}}),
        encoding="utf-8",
    )
    client = TestClient(create_app(cwd=str(tmp_path), gateway=gateway))
    _analyze(client, gateway)
    client.post("/api/analysis/save")

    assert (custom / "store" / "savedMeetings.json").exists()
    assert not (tmp_path / "data" / "store" / "savedMeetings.json").exists()
    assert client.get("/api/state").json()["models"]["pro"] == "gemini-custom"
    assert list((tmp_path / "logs").glob("server_*.log"))

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from diarist.errors import InvalidInputError, OperationInProgressError
from diarist.models import format_local_datetime
from diarist.services.controller import MeetingController
from diarist.services.llm import GatewayError


class QuestionRequest(BaseModel):
    question: str = ""


class AskRequest(BaseModel):
    question: Optional[str] = None


def create_meetings_router(controller: MeetingController) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("diarist.api.meetings")

    @router.get("/api/meetings")
    def list_meetings() -> list[dict]:
        selected = set(controller.snapshot()["qa"]["selected_ids"])
        return [
            {
                "id": meeting.id,
                "title": meeting.title,
                "timestamp": meeting.timestamp,
                "date": format_local_datetime(meeting.timestamp),
                "selected": meeting.id in selected,
            }
            for meeting in controller.list_meetings()
        ]

    @router.get("/api/meetings/{meeting_id}")
    def get_meeting(meeting_id: str) -> dict:
        try:
            return controller.get_meeting(meeting_id).to_record()
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Meeting not found") from exc

    @router.delete("/api/meetings/{meeting_id}")
    def delete_meeting(meeting_id: str) -> dict:
        try:
            controller.delete_meeting(meeting_id)
        except KeyError as exc:
            logger.warning("Meeting not found for delete: id=%s", meeting_id)
            raise HTTPException(status_code=404, detail="Meeting not found") from exc
        return controller.snapshot()

    @router.get("/api/meetings/{meeting_id}/export")
    def export_meeting(meeting_id: str) -> PlainTextResponse:
        try:
            content = controller.export_markdown(meeting_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Meeting not found") from exc
        return PlainTextResponse(content, media_type="text/markdown")

    @router.post("/api/meetings/{meeting_id}/selection")
    def toggle_selection(meeting_id: str) -> dict:
        try:
            selected = controller.toggle_selection(meeting_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Meeting not found") from exc
        return {"id": meeting_id, "selected": selected}

    @router.put("/api/qa/question")
    def set_question(payload: QuestionRequest) -> dict:
        controller.set_question(payload.question)
        return controller.snapshot()["qa"]

    @router.post("/api/qa/ask")
    def ask(payload: AskRequest) -> dict:
        try:
            answer = controller.ask(payload.question)
        except InvalidInputError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except OperationInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except GatewayError as exc:
            logger.warning("Question answering failed: %s", exc)
            raise HTTPException(status_code=502, detail=controller.error or str(exc)) from exc
        return {"answer": answer}

    return router

import logging
from typing import Optional, Union

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, Field

from diarist.errors import InvalidInputError, OperationInProgressError
from diarist.services.analysis_session import SessionStateError
from diarist.services.controller import MeetingController
from diarist.services.llm import GatewayError


class OpenEditorRequest(BaseModel):
    kind: str = Field(..., description="'speaker', 'turn', 'summary' or 'action_items'")
    target: Optional[Union[int, str]] = Field(
        None, description="Speaker id for 'speaker', turn index for 'turn'"
    )


class DraftRequest(BaseModel):
    draft: str


def create_analysis_router(controller: MeetingController) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("diarist.api.analysis")

    @router.get("/api/analysis")
    def get_analysis() -> dict:
        return controller.session.to_dict()

    @router.post("/api/analysis/file")
    async def select_file(
        file: UploadFile = File(...),
        source: str = Form("picker"),
    ) -> dict:
        contents = await file.read()
        try:
            controller.select_file(
                file.filename or "audio",
                file.content_type,
                contents,
                source=source,
            )
        except InvalidInputError as exc:
            logger.info("Rejected upload: name=%s mime=%s", file.filename, file.content_type)
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except OperationInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return controller.snapshot()

    def _run(action) -> dict:
        try:
            action()
        except InvalidInputError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except (OperationInProgressError, SessionStateError) as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except GatewayError as exc:
            logger.warning("Analysis failed: %s", exc)
            raise HTTPException(status_code=502, detail=controller.error or str(exc)) from exc
        return controller.snapshot()

    @router.post("/api/analysis/run")
    def run_analysis() -> dict:
        return _run(controller.analyze)

    @router.post("/api/analysis/redo")
    def redo_analysis() -> dict:
        return _run(controller.redo)

    @router.post("/api/analysis/reset")
    def reset_analysis() -> dict:
        try:
            controller.reset()
        except OperationInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return controller.snapshot()

    @router.post("/api/analysis/save")
    def save_analysis() -> dict:
        try:
            meeting = controller.save_meeting()
        except SessionStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        state = controller.snapshot()
        state["saved_meeting"] = meeting.to_record()
        return state

    @router.post("/api/analysis/editor")
    def open_editor(payload: OpenEditorRequest) -> dict:
        try:
            controller.open_editor(payload.kind, payload.target)
        except InvalidInputError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except (KeyError, IndexError) as exc:
            raise HTTPException(status_code=404, detail=f"No such {payload.kind}: {payload.target}") from exc
        except SessionStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return controller.session.to_dict()

    @router.patch("/api/analysis/editor")
    def update_draft(payload: DraftRequest) -> dict:
        try:
            controller.update_draft(payload.draft)
        except SessionStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return controller.session.to_dict()

    @router.post("/api/analysis/editor/commit")
    def commit_editor() -> dict:
        try:
            controller.commit_edit()
        except SessionStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return controller.session.to_dict()

    @router.delete("/api/analysis/editor")
    def cancel_editor() -> dict:
        controller.cancel_edit()
        return controller.session.to_dict()

    return router

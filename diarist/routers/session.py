import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from diarist.errors import InvalidInputError
from diarist.services.controller import MeetingController


class ViewRequest(BaseModel):
    view: str = Field(..., description="'analyze' or 'qa'")


class ModelRequest(BaseModel):
    model: str = Field(..., description="'flash' or 'pro'")


def create_session_router(controller: MeetingController) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("diarist.api.session")

    @router.get("/api/state")
    def get_state() -> dict:
        return controller.snapshot()

    @router.put("/api/view")
    def set_view(payload: ViewRequest) -> dict:
        try:
            controller.set_view(payload.view)
        except InvalidInputError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return controller.snapshot()

    @router.put("/api/model")
    def set_model(payload: ModelRequest) -> dict:
        try:
            controller.select_model(payload.model)
        except InvalidInputError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        logger.info("Model selected: %s", payload.model)
        return controller.snapshot()

    @router.delete("/api/error")
    def dismiss_error() -> dict:
        controller.clear_error()
        return controller.snapshot()

    return router

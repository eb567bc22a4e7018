import json
import logging
import os
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from diarist.context import AppContext
from diarist.errors import ConfigurationError
from diarist.routers.analysis import create_analysis_router
from diarist.routers.meetings import create_meetings_router
from diarist.routers.session import create_session_router
from diarist.services.controller import DEFAULT_MODELS, MeetingController
from diarist.services.crash_logging import enable_crash_logging
from diarist.services.llm import GeminiProvider, MeetingGateway
from diarist.services.llm.gemini_provider import DEFAULT_BASE_URL
from diarist.services.logging_setup import configure_logging
from diarist.services.meeting_store import FileKeyValueStore, KeyValueStore, MeetingStore

API_KEY_ENV = "API_KEY"


def _load_config(config_path: str, logger: logging.Logger) -> dict:
    if not os.path.exists(config_path):
        logger.info("Boot: config_path missing=%s", config_path)
        return {}
    logger.info("Boot: loading config_path=%s", config_path)
    with open(config_path, "r", encoding="utf-8") as config_file:
        config = json.load(config_file)
    if not isinstance(config, dict):
        raise ConfigurationError(f"{config_path} must contain a JSON object")
    logger.info("Boot: config keys=%s", sorted(config.keys()))
    return config


def create_app(
    *,
    cwd: Optional[str] = None,
    gateway: Optional[MeetingGateway] = None,
    kv_store: Optional[KeyValueStore] = None,
) -> FastAPI:
    cwd = cwd or os.getcwd()
    ctx = AppContext(cwd=cwd)
    configure_logging(ctx.logs_dir)
    logger = logging.getLogger("diarist.boot")
    logger.info("Boot: starting create_app cwd=%s", cwd)
    enable_crash_logging(ctx.logs_dir)

    os.makedirs(ctx.default_data_dir, exist_ok=True)
    config = _load_config(ctx.config_path, logger)

    # Resolve data directory: use custom path from config if valid, else default
    custom_data_dir = config.get("data_dir", "")
    if custom_data_dir and os.path.isdir(custom_data_dir) and os.access(custom_data_dir, os.W_OK):
        ctx.data_dir = custom_data_dir
        logger.info("Boot: using custom data_dir=%s", ctx.data_dir)
    elif custom_data_dir:
        logger.warning(
            "Boot: custom data_dir=%s is invalid or not writable, falling back to %s",
            custom_data_dir, ctx.data_dir,
        )
    ctx.ensure_dirs()

    if gateway is None:
        api_key = os.environ.get(API_KEY_ENV, "").strip()
        if not api_key:
            logger.error("Boot: %s environment variable is not set", API_KEY_ENV)
            raise ConfigurationError(f"{API_KEY_ENV} environment variable is not set")
        gemini_config = config.get("gemini", {})
        gateway = GeminiProvider(
            api_key=api_key,
            base_url=gemini_config.get("base_url") or DEFAULT_BASE_URL,
            timeout=int(gemini_config.get("timeout", 600)),
        )
    logger.info("Boot: gateway=%s", gateway.__class__.__name__)

    models = {**DEFAULT_MODELS, **config.get("models", {})}
    store = MeetingStore(kv_store or FileKeyValueStore(ctx.store_dir))
    controller = MeetingController(
        store,
        gateway,
        models=models,
        default_model=config.get("default_model", "flash"),
    )
    controller.load()
    logger.info("Boot: %d saved meetings loaded", len(controller.meetings))

    app = FastAPI(title="Diarist", version="0.1.0")
    app.state.controller = controller

    app.include_router(create_session_router(controller))
    app.include_router(create_analysis_router(controller))
    app.include_router(create_meetings_router(controller))
    logger.info("Boot: routers mounted")

    @app.get("/")
    def root():
        index_path = os.path.join(ctx.static_dir, "index.html")
        if os.path.exists(index_path):
            return FileResponse(index_path)
        return {"message": "Diarist API running", "version": app.version}

    @app.get("/api/health")
    def health() -> dict:
        return {"status": "ok", "version": app.version}

    if os.path.exists(ctx.static_dir):
        app.mount("/static", StaticFiles(directory=ctx.static_dir), name="static")
        logger.info("Boot: static mounted at /static")

    logger.info("Boot: create_app complete")
    return app

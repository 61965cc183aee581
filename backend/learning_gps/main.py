import logging
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .config import Settings, get_settings
from .db import get_engine
from .db.monitoring import get_pool_snapshot
from .developer_routes import router as developer_router
from .logging_config import configure_logging
from .milestone_routes import router as milestone_router
from .plan_routes import router as plan_router
from .session_routes import router as session_router


configure_logging()
logger = logging.getLogger(__name__)
app = FastAPI(title="Learning GPS Planner", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(plan_router)
app.include_router(milestone_router)
app.include_router(session_router)

settings_snapshot = get_settings()
if settings_snapshot.debug_endpoints:
    app.include_router(developer_router)
    logger.info("Developer endpoints enabled")
logger.info("Planner starting with text generation backend: %s", settings_snapshot.text_generation_backend)
logger.info("OpenAI API key configured: %s", bool(settings_snapshot.openai_api_key))


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "text_generation": settings.text_generation_backend}


@app.get("/healthz/database")
def database_health() -> Dict[str, Any]:
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "status": "ok",
        "dialect": engine.dialect.name,
        "pool": get_pool_snapshot(engine),
    }

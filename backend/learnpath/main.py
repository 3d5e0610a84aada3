import logging
from typing import Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, get_settings
from .db.session import get_engine
from .logging_config import configure_logging
from .routes import developer_router, router as paths_router


configure_logging()
logger = logging.getLogger(__name__)
app = FastAPI(title="Learning Path Engine", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(paths_router)

settings_snapshot = get_settings()
logger.info("Learning path engine starting; database configured: %s", bool(settings_snapshot.database_url))
if settings_snapshot.debug_endpoints:
    logger.info("Developer endpoints enabled")
    app.include_router(developer_router)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "database": "configured" if settings.database_url else "unconfigured"}


@app.get("/healthz/database")
def database_health() -> Dict[str, str]:
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except (RuntimeError, SQLAlchemyError) as exc:
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    return {"status": "ok", "dialect": engine.dialect.name}

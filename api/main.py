from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

# 프로젝트 루트의 .env 파일 명시적 로딩
project_root = Path(__file__).parent.parent
env_path = project_root / ".env"

if env_path.exists():
    load_dotenv(env_path)

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ingestion.db.session import ensure_schema
from ingestion.repositories.news import NotFound
from ingestion.services.job_tracker import JobAlreadyRunning
from ingestion.settings import get_settings
from ingestion.utils.logging import configure_logging

from .routes import router

settings = get_settings()
configure_logging(settings.structlog_level, json_enabled=settings.log_json)
logging.getLogger(__name__).info("api.env", extra={"dotenv_loaded": env_path.exists()})

app = FastAPI(title="News Sentiment API", version="0.1.0")

ensure_schema()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

app.include_router(router)


@app.exception_handler(JobAlreadyRunning)
async def job_already_running_handler(request: Request, exc: JobAlreadyRunning) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc), "job_id": exc.job_id})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.get("/healthz", tags=["system"])
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}

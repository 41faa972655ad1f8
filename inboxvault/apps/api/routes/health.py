from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from pathlib import Path

from fastapi import APIRouter
from pydantic import BaseModel, ValidationError


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

BUILD_INFO_PATH = Path("build-info.json")


class HealthResponse(BaseModel):
    status: str


class BuildInfo(BaseModel):
    name: str
    version: str
    gitSha: str
    builtAt: str


def read_build_info(path: Path = BUILD_INFO_PATH) -> BuildInfo:
    # Fall back to placeholder metadata when no build step has written the file.
    try:
        return BuildInfo.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError):
        logger.debug("build_info_unavailable path=%s", path)
        return BuildInfo(
            name="inboxvault",
            version="0.0.0",
            gitSha="unknown",
            builtAt=datetime.now(timezone.utc).isoformat(),
        )


@router.get("/healthz", response_model=HealthResponse)
async def healthz() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get("/version", response_model=BuildInfo)
async def version() -> BuildInfo:
    return read_build_info()

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response, status

from ats_api.core.config import Settings, get_settings
from ats_api.schemas.health import HealthChecks, HealthOut
from ats_api.services.repository import RepositoryError, get_repository

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", response_model=HealthOut)
async def health(
    response: Response,
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> HealthOut:
    database = "ok"
    try:
        await repository.ping()
    except RepositoryError as exc:
        logger.warning("health check database failure: %s", exc)
        database = "error"

    healthy = database == "ok"
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthOut(
        status="healthy" if healthy else "degraded",
        checks=HealthChecks(server="ok", database=database),
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.version,
    )


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}

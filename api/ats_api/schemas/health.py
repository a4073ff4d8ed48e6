from typing import Literal

from ats_api.schemas.base import ApiModel

CheckState = Literal["ok", "error"]


class HealthChecks(ApiModel):
    server: CheckState = "ok"
    database: CheckState


class HealthOut(ApiModel):
    status: Literal["healthy", "degraded"]
    checks: HealthChecks
    timestamp: str
    version: str

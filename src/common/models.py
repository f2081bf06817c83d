"""Response envelopes shared by every HTTP surface of the service."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Liveness plus which upstream integrations are configured.

    ``status`` is ``"degraded"`` when any entry of ``checks`` is false; the
    process still serves requests, and those needing the missing integration
    answer with a configuration error.
    """

    status: str = "healthy"
    service: str
    version: str
    checks: dict[str, bool] = Field(default_factory=dict)

    @classmethod
    def from_checks(cls, service: str, version: str, checks: dict[str, bool]) -> "HealthResponse":
        status = "healthy" if all(checks.values()) else "degraded"
        return cls(status=status, service=service, version=version, checks=checks)


class ErrorResponse(BaseModel):
    """Body returned for unhandled server errors."""

    error: str
    detail: str | None = None
    status_code: int = 500

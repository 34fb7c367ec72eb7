"""Typed failures raised by the risk state engine.

Every error carries a stable ``code`` and the HTTP status the API layer
renders it with, so callers can turn them into actionable messages.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse


class RiskEngineError(Exception):
    """Base class for all engine failures."""
    code = "RISK_ENGINE_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RiskEngineError):
    """Malformed or out-of-domain input."""
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFound(RiskEngineError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransition(RiskEngineError):
    """Illegal lifecycle move on a treatment alert."""
    code = "INVALID_TRANSITION"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, alert_id: int, from_status: str, to_status: str):
        super().__init__(
            f"Treatment alert {alert_id} cannot move from '{from_status}' to '{to_status}'"
        )
        self.alert_id = alert_id
        self.from_status = from_status
        self.to_status = to_status


class DuplicateLink(RiskEngineError):
    code = "DUPLICATE_LINK"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, control_code: str, risk_id: int):
        super().__init__(f"Control {control_code} is already linked to risk {risk_id}")
        self.control_code = control_code
        self.risk_id = risk_id


class ControlInUse(RiskEngineError):
    """Control still linked to risks; it must be unlinked before deletion."""
    code = "CONTROL_IN_USE"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, control_id: int, linked_risks: int):
        super().__init__(
            f"Control {control_id} is linked to {linked_risks} risk(s); unlink it before deleting"
        )
        self.control_id = control_id
        self.linked_risks = linked_risks


class NotApplied(RiskEngineError):
    code = "NOT_APPLIED"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, alert_id: int, current_status: str):
        super().__init__(
            f"Treatment alert {alert_id} is not applied (current status: '{current_status}')"
        )
        self.alert_id = alert_id
        self.current_status = current_status


class NoOpenPeriod(RiskEngineError):
    code = "NO_OPEN_PERIOD"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, organization_id: int):
        super().__init__(f"Organization {organization_id} has no open period")
        self.organization_id = organization_id


class ConcurrentModification(RiskEngineError):
    """Optimistic-lock conflict or lock contention on a mutated row."""
    code = "CONCURRENT_MODIFICATION"
    status_code = status.HTTP_409_CONFLICT


class CommitInProgress(RiskEngineError):
    code = "COMMIT_IN_PROGRESS"
    status_code = status.HTTP_423_LOCKED

    def __init__(self, organization_id: int):
        super().__init__(
            f"A period commit is in progress for organization {organization_id}; retry shortly"
        )
        self.organization_id = organization_id


class StorageFailure(RiskEngineError):
    """Durable-store round trip failed or timed out."""
    code = "STORAGE_FAILURE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


async def risk_engine_error_handler(request: Request, exc: RiskEngineError) -> JSONResponse:
    """Render engine failures as ``{"detail": ..., "code": ...}``."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )

"""Audit log schemas."""
from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict
from app.schemas.user import UserBrief


class AuditLogResponse(BaseModel):
    """One recorded change; ``user`` is null once the actor has been removed."""
    model_config = ConfigDict(from_attributes=True)

    log_id: int
    organization_id: int
    entity_type: str
    entity_id: int
    action: str
    changes: Optional[Dict[str, Any]] = None
    timestamp: datetime
    user_id: Optional[int] = None
    user: Optional[UserBrief] = None

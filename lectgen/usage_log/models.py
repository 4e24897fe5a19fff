"""
Usage log data models: one BillableActionRecord per AI, speech or PDF call.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..quota.models import as_utc, utcnow

# Simplified provider pricing (USD)
AI_COST_PER_1K_TOKENS = 0.002
SPEECH_TO_TEXT_FLAT_COST = 0.006


class ActionType(Enum):
    """Billable action kinds."""
    AI_GENERATION = "AI_GENERATION"
    SPEECH_TO_TEXT = "SPEECH_TO_TEXT"
    PDF_GENERATION = "PDF_GENERATION"


class ActionStatus(Enum):
    """Outcome of a billable action."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"


def estimate_cost(action_type: ActionType, tokens_used: Optional[int] = None) -> float:
    """Estimate the USD cost of an action."""
    if action_type == ActionType.AI_GENERATION:
        return (tokens_used or 0) / 1000 * AI_COST_PER_1K_TOKENS
    if action_type == ActionType.SPEECH_TO_TEXT:
        return SPEECH_TO_TEXT_FLAT_COST
    return 0.0


@dataclass
class UsageRecord:
    """Immutable record of one billable action."""
    user_id: str
    action_type: ActionType
    status: ActionStatus
    tokens_used: Optional[int] = None
    duration_ms: Optional[int] = None
    cost: Optional[float] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action_type": self.action_type.value,
            "status": self.status.value,
            "tokens_used": self.tokens_used,
            "duration_ms": self.duration_ms,
            "cost": self.cost,
            "error_message": self.error_message,
            "metadata": self.metadata,
            "created_at": as_utc(self.created_at).isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageRecord":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            action_type=ActionType(data["action_type"]),
            status=ActionStatus(data["status"]),
            tokens_used=data.get("tokens_used"),
            duration_ms=data.get("duration_ms"),
            cost=data.get("cost"),
            error_message=data.get("error_message"),
            metadata=data.get("metadata") or {},
            created_at=as_utc(datetime.fromisoformat(data["created_at"])),
        )


class UsagePayload(BaseModel):
    """Body of POST /api/usage."""
    action_type: ActionType
    status: ActionStatus = ActionStatus.SUCCESS
    tokens_used: Optional[int] = Field(default=None, ge=0)
    duration_ms: Optional[int] = Field(default=None, ge=0)
    error_message: Optional[str] = Field(default=None, max_length=2000)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UsageQuery(BaseModel):
    """Query string of GET /api/admin/usage and /api/admin/usage/stats."""
    uid: Optional[str] = None
    action_type: Optional[ActionType] = None
    status: Optional[ActionStatus] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)

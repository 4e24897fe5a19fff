"""
Data Models for Event Tracking
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class Event:
    """Internal event structure for storage."""

    ts: str
    type: str
    uid: str
    meta: Dict[str, Any] = field(default_factory=dict)
    path: Optional[str] = None
    ua: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ts": self.ts,
            "type": self.type,
            "uid": self.uid,
            "meta": self.meta,
            "path": self.path,
            "ua": self.ua
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Event':
        """Create Event from dictionary."""
        return cls(
            ts=data.get("ts", ""),
            type=data.get("type", ""),
            uid=data.get("uid", ""),
            meta=data.get("meta", {}),
            path=data.get("path"),
            ua=data.get("ua")
        )

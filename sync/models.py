"""Data models for booking calendar sync."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class Booking:
    """Booking record as stored in the bookings table."""
    id: str
    user_id: str
    summary: str
    date: str
    start_date_time: str
    end_date_time: str
    status: str = 'confirmed'
    description: Optional[str] = None
    event_id: Optional[str] = None
    last_synced_date: Optional[str] = None

    @property
    def is_linked(self) -> bool:
        return bool(self.event_id)

    @property
    def has_drift(self) -> bool:
        return self.last_synced_date != self.date

    @classmethod
    def from_remote_event(cls, event: Dict[str, Any], account_id: str) -> 'Booking':
        """Placeholder booking describing a remote event with no booking behind it."""
        return cls(
            id=event['id'],
            user_id=account_id,
            summary=event.get('summary') or 'Event removed: no matching booking',
            date='',
            start_date_time='',
            end_date_time='',
            status='canceled',
            description=event.get('description'),
            event_id=event['id'],
        )


class SyncAction(Enum):
    """Action decided for a booking or remote event."""
    CREATE = 'create'
    RECREATE = 'recreate'
    SKIP = 'skip'
    UPDATE = 'update'
    DELETE = 'delete'


@dataclass
class PlannedAction:
    """A booking paired with the action the reconciler decided for it."""
    action: SyncAction
    booking: Booking


@dataclass
class SyncPlan:
    """Booking actions in input order plus the unclaimed remote events."""
    actions: List[PlannedAction] = field(default_factory=list)
    orphans: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def count(self, action: SyncAction) -> int:
        if action is SyncAction.DELETE:
            return len(self.orphans)
        return sum(1 for planned in self.actions if planned.action is action)


@dataclass
class SyncResult:
    """Result of sync operation."""
    added: List[Booking] = field(default_factory=list)
    updated: List[Booking] = field(default_factory=list)
    deleted: List[Booking] = field(default_factory=list)
    total: int = 0
    errors: List[str] = field(default_factory=list)

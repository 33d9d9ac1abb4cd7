"""ORM models exposed for metadata discovery."""
from sentinel.db.models.dismissal_event import DismissalEvent
from sentinel.db.models.escalation_state import EscalationState
from sentinel.db.models.memory_note import MemoryNote
from sentinel.db.models.notification_audit import NotificationAudit
from sentinel.db.models.prep_artifact import PrepArtifact
from sentinel.db.models.schedule import Schedule
from sentinel.db.models.user import User

__all__ = [
    "DismissalEvent",
    "EscalationState",
    "MemoryNote",
    "NotificationAudit",
    "PrepArtifact",
    "Schedule",
    "User",
]

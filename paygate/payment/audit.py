# paygate/payment/audit.py
"""
Audit logging for payment gate transitions.

Every decision the gate takes is appended to a JSON lines file, which
is useful for:
- Dispute resolution
- Reconciling settlements with served requests
- Debugging rejected proofs

Log format: JSON lines (one event per line)
Log location: Configured via AUDIT_LOG_PATH

Payment proofs are never written to the audit log, only their presence.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    REQUEST_RECEIVED = "request_received"
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_REDIRECTED = "payment_redirected"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_FAILED = "payment_failed"
    FACILITATOR_UNAVAILABLE = "facilitator_unavailable"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    payer: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        client_ip: Client IP address (if available)
        payer: Payer wallet address reported by the facilitator (if available)
        request_id: Unique request identifier (if available)

    Returns:
        A structured event ready to be written to the audit log
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "payer": payer,
        "data": data,
    }


class AuditLog:
    """Append-only JSON lines audit log."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def ensure_directory(self) -> bool:
        """
        Ensure the audit log directory exists.

        Returns:
            True if directory exists or was created, False on error
        """
        try:
            log_dir = self.path.parent
            if not log_dir.exists():
                log_dir.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created audit log directory: {log_dir}")
            return True
        except OSError as e:
            logger.error(f"Failed to create audit log directory: {e}")
            return False

    def log_event(
        self,
        event_type: AuditEventType,
        data: Dict[str, Any],
        client_ip: Optional[str] = None,
        payer: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        """
        Append an event to the audit log.

        Audit failures never affect the request being served.

        Returns:
            The request_id used for this event, or None on error
        """
        event = create_audit_event(
            event_type=event_type,
            data=data,
            client_ip=client_ip,
            payer=payer,
            request_id=request_id,
        )

        try:
            self.ensure_directory()
            with open(self.path, "a") as f:
                f.write(json.dumps(event) + "\n")

            logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
            return event["request_id"]

        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write audit event: {e}")
            return None

    def log_transition(
        self,
        event_type: AuditEventType,
        method: str,
        path: str,
        proof_present: bool,
        client_ip: Optional[str] = None,
        payer: Optional[str] = None,
        request_id: Optional[str] = None,
        **extra: Any
    ) -> Optional[str]:
        """Log a gate transition with method, path and proof presence."""
        data = {"method": method, "path": path, "proof_present": proof_present}
        data.update(extra)
        return self.log_event(
            event_type=event_type,
            data=data,
            client_ip=client_ip,
            payer=payer,
            request_id=request_id,
        )

    def read(
        self,
        max_entries: int = 100,
        event_type: Optional[AuditEventType] = None
    ) -> List[Dict[str, Any]]:
        """
        Read entries from the audit log.

        Args:
            max_entries: Maximum number of entries to return
            event_type: Filter by event type (optional)

        Returns:
            List of audit events (most recent first)
        """
        if not self.path.exists():
            return []

        events = []
        try:
            with open(self.path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if event_type and event.get("event_type") != event_type.value:
                        continue
                    events.append(event)
        except OSError as e:
            logger.error(f"Failed to read audit log: {e}")
            return []

        # Most recent first, limited to max_entries
        return list(reversed(events))[:max_entries]

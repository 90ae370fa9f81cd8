# app/x402/audit.py
"""
Audit logging for x402 payment decisions.

Every gate decision that matters for disputes or abuse investigation is
appended to a JSON-lines file:
- 402 challenge issued (resource, price, network)
- Payment verified (hash, amount, from ledger or cache)
- Payment rejected (hash, reason)
- Development-mode bypass used, or attempted outside development mode
- Query rejected before payment verification
- Error (type, context)

Log location: X402_AUDIT_LOG_PATH. Disabled with X402_AUDIT_ENABLED=false.
Audit failures are logged and never interrupt request handling.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_CACHE_HIT = "payment_cache_hit"
    PAYMENT_REJECTED = "payment_rejected"
    DEV_BYPASS_USED = "dev_bypass_used"
    BYPASS_REJECTED = "bypass_rejected"
    QUERY_REJECTED = "query_rejected"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a short request ID for correlating events."""
    return uuid.uuid4().hex[:8]


def get_audit_log_path() -> Path:
    return Path(settings.X402_AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "data": data,
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an event to the audit log.

    Returns:
        The request_id used for this event, or None if nothing was written
    """
    if not settings.X402_AUDIT_ENABLED:
        return None

    event = create_audit_event(event_type, data, client_ip=client_ip, request_id=request_id)

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event, default=str) + "\n")
    except OSError as e:
        logger.error(f"Failed to write audit event {event_type.value}: {e}")
        return None

    logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
    return event["request_id"]


def log_payment_required_sent(
    client_ip: str,
    resource: str,
    amount: str,
    network: str,
    recipient: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        AuditEventType.PAYMENT_REQUIRED_SENT,
        {"resource": resource, "amount": amount, "network": network, "recipient": recipient},
        client_ip=client_ip,
        request_id=request_id,
    )


def log_payment_verified(
    client_ip: str,
    transaction_hash: str,
    amount: Optional[str],
    network: str,
    from_cache: bool = False,
    request_id: Optional[str] = None
) -> Optional[str]:
    event_type = AuditEventType.PAYMENT_CACHE_HIT if from_cache else AuditEventType.PAYMENT_VERIFIED
    return log_audit_event(
        event_type,
        {"transaction_hash": transaction_hash, "amount": amount, "network": network},
        client_ip=client_ip,
        request_id=request_id,
    )


def log_payment_rejected(
    client_ip: str,
    transaction_hash: str,
    reason: str,
    message: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        AuditEventType.PAYMENT_REJECTED,
        {"transaction_hash": transaction_hash, "reason": reason, "message": message},
        client_ip=client_ip,
        request_id=request_id,
    )


def log_bypass(
    client_ip: str,
    allowed: bool,
    path: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Record every use of the bypass token, allowed or not."""
    return log_audit_event(
        AuditEventType.DEV_BYPASS_USED if allowed else AuditEventType.BYPASS_REJECTED,
        {"path": path, "development_mode": allowed},
        client_ip=client_ip,
        request_id=request_id,
    )


def log_query_rejected(
    client_ip: str,
    path: str,
    message: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        AuditEventType.QUERY_REJECTED,
        {"path": path, "message": message},
        client_ip=client_ip,
        request_id=request_id,
    )


def log_error(
    client_ip: str,
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        AuditEventType.ERROR,
        {"error_type": error_type, "error_message": error_message, "context": context or {}},
        client_ip=client_ip,
        request_id=request_id,
    )


def _iter_events() -> Iterator[Dict[str, Any]]:
    log_path = get_audit_log_path()
    if not log_path.exists():
        return
    with open(log_path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                continue


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    client_ip: Optional[str] = None
) -> list:
    """
    Read audit events, most recent first.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Only return events of this type
        client_ip: Only return events from this client
    """
    try:
        events = [
            event for event in _iter_events()
            if (event_type is None or event.get("event_type") == event_type.value)
            and (client_ip is None or event.get("client_ip") == client_ip)
        ]
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    events.reverse()
    return events[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """Event counts per type plus the time range covered by the log."""
    log_path = get_audit_log_path()
    stats: Dict[str, Any] = {
        "total_events": 0,
        "events_by_type": {},
        "first_event": None,
        "last_event": None,
        "log_path": str(log_path),
        "log_exists": log_path.exists(),
    }

    try:
        for event in _iter_events():
            stats["total_events"] += 1
            kind = event.get("event_type", "unknown")
            stats["events_by_type"][kind] = stats["events_by_type"].get(kind, 0) + 1
            if event.get("timestamp"):
                stats["first_event"] = stats["first_event"] or event["timestamp"]
                stats["last_event"] = event["timestamp"]
    except OSError as e:
        logger.error(f"Failed to get audit stats: {e}")
        stats["error"] = str(e)

    return stats

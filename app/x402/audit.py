# app/x402/audit.py
"""
Audit logging for x402 payment exchanges.

Every challenge, proof and guarded resource operation is recorded for
reconciliation and dispute resolution.

Log format: JSON lines (one event per line)
Log location: Configured via X402_AUDIT_LOG_PATH (disabled with X402_AUDIT_ENABLED=false)
"""
import json
import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    CHALLENGE_ISSUED = "challenge_issued"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_REJECTED = "payment_rejected"
    RESOURCE_UPLOADED = "resource_uploaded"
    RESOURCE_DOWNLOADED = "resource_downloaded"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.X402_AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Create an audit event dictionary."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an audit event to the audit log.

    Write failures are logged and swallowed; auditing never fails a request.

    Returns:
        The request_id used for this event, or None if not written
    """
    if not settings.X402_AUDIT_ENABLED:
        return None

    event = create_audit_event(event_type, data, client_ip=client_ip, request_id=request_id)

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


def log_challenge_issued(
    client_ip: str,
    path: str,
    amount: str,
    pay_to: str,
    network: str,
    reason: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 challenge being sent."""
    return log_audit_event(
        AuditEventType.CHALLENGE_ISSUED,
        {"path": path, "amount": amount, "pay_to": pay_to, "network": network, "reason": reason},
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_received(client_ip: str, transaction_hash: str, network: str,
                         request_id: Optional[str] = None) -> Optional[str]:
    return log_audit_event(
        AuditEventType.PAYMENT_RECEIVED,
        {"transaction_hash": transaction_hash, "network": network},
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_verified(client_ip: str, transaction_hash: str, payer: Optional[str],
                         amount: str, request_id: Optional[str] = None) -> Optional[str]:
    return log_audit_event(
        AuditEventType.PAYMENT_VERIFIED,
        {"transaction_hash": transaction_hash, "payer": payer, "amount": amount},
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_rejected(client_ip: str, transaction_hash: Optional[str], reason: str,
                         request_id: Optional[str] = None) -> Optional[str]:
    return log_audit_event(
        AuditEventType.PAYMENT_REJECTED,
        {"transaction_hash": transaction_hash, "reason": reason},
        client_ip=client_ip,
        request_id=request_id
    )


def log_resource_uploaded(handle: str, name: str, size: int, price_atomic: str,
                          pay_to: str, request_id: Optional[str] = None) -> Optional[str]:
    return log_audit_event(
        AuditEventType.RESOURCE_UPLOADED,
        {"handle": handle, "name": name, "size": size, "price_atomic": price_atomic, "pay_to": pay_to},
        request_id=request_id
    )


def log_resource_downloaded(handle: str, size: int, format: str,
                            request_id: Optional[str] = None) -> Optional[str]:
    return log_audit_event(
        AuditEventType.RESOURCE_DOWNLOADED,
        {"handle": handle, "size": size, "format": format},
        request_id=request_id
    )


def log_error(error_type: str, message: str, context: Optional[Dict[str, Any]] = None,
              client_ip: Optional[str] = None, request_id: Optional[str] = None) -> Optional[str]:
    return log_audit_event(
        AuditEventType.ERROR,
        {"error_type": error_type, "message": message, "context": context or {}},
        client_ip=client_ip,
        request_id=request_id
    )


def read_audit_log(limit: Optional[int] = None,
                   event_type: Optional[AuditEventType] = None) -> List[Dict[str, Any]]:
    """
    Read events back from the audit log, newest last.

    Args:
        limit: Return only the last N matching events
        event_type: Only return events of this type
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    events = []
    with open(log_path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed audit log line")
                continue
            if event_type is None or event.get("event_type") == event_type.value:
                events.append(event)

    if limit is not None:
        events = events[-limit:]
    return events


def get_audit_stats() -> Dict[str, Any]:
    """Count audit events by type."""
    events = read_audit_log()
    counts = Counter(event.get("event_type") for event in events)
    return {
        "total_events": len(events),
        "by_type": dict(counts),
        "log_path": str(get_audit_log_path()),
    }

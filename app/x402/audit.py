# app/x402/audit.py
"""
Audit logging for x402 purchases.

Every payment decision the gate makes is appended to a JSON lines file so
disputes ("I paid but got nothing") and reconciliation can be answered from
the log alone.

Log location: X402_AUDIT_LOG_PATH (disable with X402_AUDIT_ENABLED=false)

Events logged:
- Challenge sent (item, price, receiving account)
- Payment verified (proof, amount received)
- Payment rejected (proof, verdict code)
- Development bypass used
- Unknown item requested
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    CHALLENGE_SENT = "challenge_sent"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_REJECTED = "payment_rejected"
    DEV_BYPASS = "dev_bypass"
    ITEM_NOT_FOUND = "item_not_found"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.X402_AUDIT_LOG_PATH)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


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

    Write failures are logged and swallowed here: the audit trail must never
    turn a paid request into an error.

    Returns:
        The request_id used for this event, or None if nothing was written
    """
    if not settings.X402_AUDIT_ENABLED:
        return None

    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        request_id=request_id
    )

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event, default=_json_default) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except (OSError, TypeError) as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


# Convenience functions for specific event types

def log_challenge_sent(
    item_id: str,
    amount: Decimal,
    currency: str,
    receiving_account: Optional[str],
    client_ip: Optional[str] = None
) -> Optional[str]:
    """Log a 402 challenge."""
    return log_audit_event(
        event_type=AuditEventType.CHALLENGE_SENT,
        data={
            "item": item_id,
            "amount": amount,
            "currency": currency,
            "network": settings.X402_NETWORK,
            "receiving_account": receiving_account,
        },
        client_ip=client_ip
    )


def log_payment_verified(
    item_id: str,
    proof_id: str,
    charged: Decimal,
    amount_received: Decimal,
    client_ip: Optional[str] = None
) -> Optional[str]:
    """Log an accepted payment."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_VERIFIED,
        data={
            "item": item_id,
            "proof_id": proof_id,
            "charged": charged,
            "amount_received": amount_received,
        },
        client_ip=client_ip
    )


def log_payment_rejected(
    item_id: str,
    proof_id: str,
    code: str,
    reason: str,
    client_ip: Optional[str] = None
) -> Optional[str]:
    """Log a rejected payment proof."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REJECTED,
        data={
            "item": item_id,
            "proof_id": proof_id,
            "code": code,
            "reason": reason,
        },
        client_ip=client_ip
    )


def log_dev_bypass(item_id: str, client_ip: Optional[str] = None) -> Optional[str]:
    """Log content released through the development bypass proof."""
    return log_audit_event(
        event_type=AuditEventType.DEV_BYPASS,
        data={
            "item": item_id,
            "environment": settings.ENVIRONMENT,
        },
        client_ip=client_ip
    )


def log_item_not_found(item_id: str, client_ip: Optional[str] = None) -> Optional[str]:
    """Log a request for an unknown item."""
    return log_audit_event(
        event_type=AuditEventType.ITEM_NOT_FOUND,
        data={"item": item_id},
        client_ip=client_ip
    )


def read_audit_log(
    max_entries: Optional[int] = 100,
    event_type: Optional[AuditEventType] = None
) -> list:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return (None for all)
        event_type: Filter by event type (optional)

    Returns:
        List of audit events (most recent first)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    events = []
    try:
        with open(log_path, "r") as f:
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

    # Most recent first
    events.reverse()
    return events if max_entries is None else events[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """
    Get statistics from the audit log.

    Returns:
        Dict with event counts and date range
    """
    log_path = get_audit_log_path()
    events = read_audit_log(max_entries=None)

    events_by_type: Dict[str, int] = {}
    for event in events:
        event_type = event.get("event_type", "unknown")
        events_by_type[event_type] = events_by_type.get(event_type, 0) + 1

    timestamps = [e["timestamp"] for e in events if e.get("timestamp")]
    return {
        "total_events": len(events),
        "events_by_type": events_by_type,
        "first_event": min(timestamps) if timestamps else None,
        "last_event": max(timestamps) if timestamps else None,
        "log_path": str(log_path),
        "log_exists": log_path.exists(),
    }

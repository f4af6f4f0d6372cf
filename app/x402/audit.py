# app/x402/audit.py
"""
Audit logging for facilitator settlements.

Every verification, submission and confirmation outcome is appended to a
JSON lines file so that a disputed payment can be traced from the envelope
fingerprint to the on-chain transaction.

Log format: JSON lines (one event per line)
Log location: Configured via X402_AUDIT_LOG_PATH
Disabled entirely with X402_AUDIT_ENABLED=false

Events logged:
- Payment verified (valid / invalid reason)
- Transaction submitted (fingerprint, transaction hash)
- Submission failed (fingerprint, backend reason)
- Settlement pending / confirmed (transaction hash, network)
- 402 returned for a protected resource
- Error (type, context)
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_VERIFIED = "payment_verified"
    TRANSACTION_SUBMITTED = "transaction_submitted"
    SUBMISSION_FAILED = "submission_failed"
    SETTLEMENT_PENDING = "settlement_pending"
    SETTLEMENT_CONFIRMED = "settlement_confirmed"
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.X402_AUDIT_LOG_PATH)


def ensure_audit_log_directory() -> bool:
    """
    Ensure the audit log directory exists.

    Returns:
        True if directory exists or was created, False on error
    """
    try:
        log_dir = get_audit_log_path().parent
        if not log_dir.exists():
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created audit log directory: {log_dir}")
        return True
    except OSError as e:
        logger.error(f"Failed to create audit log directory: {e}")
        return False


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        request_id: Unique request identifier (if available)

    Returns:
        A structured event ready to be written to the audit log
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Log an audit event to the audit log.

    Audit failures are logged and swallowed: a full disk must not turn a
    settled payment into an error response.

    Returns:
        The request_id used for this event, or None if disabled or on error
    """
    if not settings.X402_AUDIT_ENABLED:
        return None

    event = create_audit_event(event_type=event_type, data=data, request_id=request_id)

    try:
        ensure_audit_log_directory()
        with open(get_audit_log_path(), "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


# Convenience functions for specific event types

def log_payment_verified(
    is_valid: bool,
    invalid_reason: Optional[str] = None,
    network: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a verification outcome."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_VERIFIED,
        data={
            "is_valid": is_valid,
            "invalid_reason": invalid_reason,
            "network": network,
        },
        request_id=request_id
    )


def log_transaction_submitted(
    fingerprint: str,
    tx_hash: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a successful submission to the ledger."""
    return log_audit_event(
        event_type=AuditEventType.TRANSACTION_SUBMITTED,
        data={
            "fingerprint": fingerprint,
            "transaction_hash": tx_hash,
        },
        request_id=request_id
    )


def log_submission_failed(
    fingerprint: str,
    reason: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a submission the ledger rejected."""
    return log_audit_event(
        event_type=AuditEventType.SUBMISSION_FAILED,
        data={
            "fingerprint": fingerprint,
            "reason": reason,
        },
        request_id=request_id
    )


def log_settlement_pending(
    tx_hash: str,
    pay_to: str,
    unit: str,
    min_amount: int,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a settlement that is submitted but not yet confirmed."""
    return log_audit_event(
        event_type=AuditEventType.SETTLEMENT_PENDING,
        data={
            "transaction_hash": tx_hash,
            "pay_to": pay_to,
            "unit": unit,
            "min_amount": min_amount,
        },
        request_id=request_id
    )


def log_settlement_confirmed(
    tx_hash: str,
    network: Optional[str],
    pay_to: str,
    unit: str,
    min_amount: int,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a settlement with a matching confirmed output."""
    return log_audit_event(
        event_type=AuditEventType.SETTLEMENT_CONFIRMED,
        data={
            "transaction_hash": tx_hash,
            "network": network,
            "pay_to": pay_to,
            "unit": unit,
            "min_amount": min_amount,
        },
        request_id=request_id
    )


def log_payment_required_sent(
    client_ip: str,
    resource: str,
    pay_to: str,
    amount: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 Payment Required response."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={
            "client_ip": client_ip,
            "resource": resource,
            "pay_to": pay_to,
            "amount": amount,
        },
        request_id=request_id
    )


def log_error(
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an error event."""
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        request_id=request_id
    )


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    tx_hash: Optional[str] = None
) -> list:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        tx_hash: Filter by transaction hash (optional)

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
                if tx_hash and event.get("data", {}).get("transaction_hash") != tx_hash:
                    continue
                events.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    # Most recent first
    return list(reversed(events))[:max_entries]

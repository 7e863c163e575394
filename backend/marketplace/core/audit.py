"""
Audit logging for marketplace events that move money, stock or trust.

Entries are JSON lines on the ``audit`` logger so they can be shipped
separately from application logs.
"""
import logging
import json
from datetime import datetime, timezone
from typing import Any, Optional, Dict

audit_logger = logging.getLogger("audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLog:
    """Central audit logging for marketplace events."""

    @staticmethod
    def log_action(
        action: str,  # "create", "approve", "reject", "delete", "status_change"
        resource_type: str,  # "order", "user", "rating", "transaction", "product"
        resource_id: Any,
        user_id: Optional[int],
        changes: Optional[Dict[str, Any]] = None,
    ):
        """
        Log a state change.

        Usage:
            AuditLog.log_action("status_change", "order", 12, user.id, changes={"from": "confirmed", "to": "preparing"})
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": f"{resource_type}.{action}",
            "user_id": user_id,
            "resource_id": resource_id,
        }

        if changes:
            log_entry["changes"] = changes

        audit_logger.info(json.dumps(log_entry, default=str))

    @staticmethod
    def log_access_denied(
        action: str,
        resource_type: str,
        resource_id: Any,
        user_id: Optional[int],
        reason: str,
    ):
        """
        Log denied access attempts.

        Usage:
            AuditLog.log_access_denied("update", "order", 456, 7, "Not a participant")
        """
        log_entry = {
            "timestamp": _now(),
            "event_severity": "WARNING",
            "event_type": "access_denied",
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "user_id": user_id,
            "reason": reason,
        }

        audit_logger.warning(json.dumps(log_entry, default=str))

    @staticmethod
    def log_payment_event(
        event: str,  # "initialized", "verified", "webhook", "status_synced"
        tx_ref: str,
        order_id: Optional[int],
        status: str,
        amount: Any = None,
    ):
        log_entry = {
            "timestamp": _now(),
            "event_type": f"payment.{event}",
            "tx_ref": tx_ref,
            "order_id": order_id,
            "status": status,
        }
        if amount is not None:
            log_entry["amount"] = str(amount)

        audit_logger.info(json.dumps(log_entry, default=str))

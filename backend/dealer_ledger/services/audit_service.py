"""
Audit Logging Service
Records who changed what in the ledger, inside the same transaction as the change
"""
from sqlalchemy.orm import Session
from sqlalchemy import desc
from typing import Optional, List, Dict
import json
import logging

from dealer_ledger.models import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    """Constants for audit actions"""
    # Chart of accounts
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DEACTIVATE = "DEACTIVATE"

    # Journal
    JOURNAL_POSTED = "JOURNAL_POSTED"
    JOURNAL_VOIDED = "JOURNAL_VOIDED"

    # Payroll
    PAYROLL_STATUS_CHANGED = "PAYROLL_STATUS_CHANGED"
    PAYROLL_ACCRUED = "PAYROLL_ACCRUED"
    PAYROLL_PAYMENT_POSTED = "PAYROLL_PAYMENT_POSTED"
    PAYROLL_RECORD_PAID = "PAYROLL_RECORD_PAID"


class AuditService:
    """Service for recording and retrieving audit logs"""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        action: str,
        resource_type: str,
        actor_id: str,
        resource_id: Optional[int] = None,
        description: Optional[str] = None,
        old_values: Optional[Dict] = None,
        new_values: Optional[Dict] = None
    ) -> AuditLog:
        """
        Add an audit row to the current transaction.

        The row is only flushed; it commits or rolls back together with the
        operation it describes.
        """
        audit_log = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor_id,
            description=description,
            old_values=json.dumps(old_values, default=str) if old_values else None,
            new_values=json.dumps(new_values, default=str) if new_values else None
        )
        self.db.add(audit_log)
        self.db.flush()

        logger.info(f"Audit: {action} {resource_type}(id={resource_id}) by actor={actor_id}")
        return audit_log

    def get_by_resource(self, resource_type: str, resource_id: int, limit: int = 50) -> List[AuditLog]:
        """Get audit history for a specific resource"""
        return self.db.query(AuditLog).filter(
            AuditLog.resource_type == resource_type,
            AuditLog.resource_id == resource_id
        ).order_by(desc(AuditLog.id)).limit(limit).all()

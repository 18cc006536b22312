"""
Audit Service

Centralized audit logging for booking, hold and duty actions.
Entries are added to the current session and committed together with
the operation they describe.
"""

from typing import Optional, Dict, Any, List
import logging
import json
from flask import request, has_request_context
from models import db, AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Service class for centralized audit logging"""

    @staticmethod
    def log_action(action: str,
                   entity_type: Optional[str] = None,
                   entity_id: Optional[int] = None,
                   details: Optional[Dict[str, Any]] = None,
                   actor: str = 'system',
                   severity: str = 'info') -> AuditLog:
        """
        Log an audit event with request context when one is available.

        Args:
            action: Action performed (e.g., 'create_booking', 'clock_in')
            entity_type: Type of entity affected (e.g., 'booking', 'driver')
            entity_id: ID of the affected entity
            details: Additional details about the action
            actor: Who performed the action
            severity: 'info', 'warning' or 'critical'
        """
        audit = AuditLog()
        audit.actor = actor
        audit.action = action
        audit.entity_type = entity_type
        audit.entity_id = entity_id
        audit.severity = severity
        audit.new_values = json.dumps(details, default=str) if details else None

        if has_request_context():
            audit.ip_address = request.remote_addr
            audit.user_agent = request.headers.get('User-Agent', '')[:255]

        db.session.add(audit)

        # Let outer transaction handle the commit
        logger.debug(f"Audit logged: {action} on {entity_type} {entity_id}")
        return audit

    @staticmethod
    def get_entity_history(entity_type: str, entity_id: int, limit: int = 50) -> List[AuditLog]:
        """Most recent audit entries for one entity"""
        return AuditLog.query.filter_by(entity_type=entity_type, entity_id=entity_id) \
                             .order_by(AuditLog.created_at.desc(), AuditLog.id.desc()) \
                             .limit(limit).all()

"""
Audit logging module for immutable audit trail.

All significant actions are logged with integrity verification.
This module is append-only - records are never modified or deleted.
"""

import json
from datetime import datetime
from typing import Any, Dict, Optional

from flask import current_app, has_request_context, request

from formengine import db
from formengine.models import AuditLog


class AuditAction:
    """Constants for audit actions."""
    FORM_LOADED = 'form_loaded'
    FORM_LOAD_FAILED = 'form_load_failed'
    FIELD_CHANGED = 'field_changed'
    VALIDATION_PASSED = 'validation_passed'
    VALIDATION_FAILED = 'validation_failed'
    SUBMISSION_CREATED = 'submission_created'
    SUBMISSION_REJECTED = 'submission_rejected'


class AuditCategory:
    """Constants for audit action categories."""
    CREATE = 'create'
    UPDATE = 'update'
    SEND = 'send'
    SYSTEM = 'system'


def log_action(
    action: str,
    action_category: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    form_token: Optional[str] = None,
    submission_id: Optional[int] = None,
    actor_type: str = 'system',
    actor_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    success: bool = True,
    error_message: Optional[str] = None
) -> Optional[AuditLog]:
    """
    Log an action to the audit trail.

    Args:
        action: The action performed (use AuditAction constants)
        action_category: Category of action (use AuditCategory constants)
        resource_type: Type of resource affected
        resource_id: Identifier of the resource
        form_token: Associated form session token if applicable
        submission_id: Associated submission ID if applicable
        actor_type: Type of actor ('user' or 'system')
        actor_id: Identifier of the actor
        details: Additional structured details
        success: Whether the action succeeded
        error_message: Error message if action failed

    Returns:
        The created AuditLog record, or None if it could not be written
    """
    try:
        ip_address = None
        user_agent = None

        if has_request_context():
            ip_address = request.remote_addr
            user_agent = request.headers.get('User-Agent')
            if actor_type == 'user' and not actor_id:
                actor_id = ip_address

        audit_log = AuditLog(
            timestamp=datetime.utcnow(),
            action=action,
            action_category=action_category,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id else None,
            form_token=form_token,
            submission_id=submission_id,
            actor_type=actor_type,
            actor_id=actor_id,
            details_json=json.dumps(details, sort_keys=True) if details else None,
            success=success,
            error_message=error_message,
            ip_address=ip_address,
            user_agent=user_agent
        )
        audit_log.integrity_hash = audit_log.compute_integrity_hash()

        db.session.add(audit_log)
        db.session.commit()

        return audit_log

    except Exception as e:
        # Audit logging must not break the request
        db.session.rollback()
        current_app.logger.error(f'Failed to create audit log: {str(e)}')
        return None


def log_form_loaded(form_token: str, form_type: str, section_count: int) -> Optional[AuditLog]:
    """Log a schema being loaded into a new form session."""
    return log_action(
        action=AuditAction.FORM_LOADED,
        action_category=AuditCategory.CREATE,
        resource_type='form_session',
        resource_id=form_token,
        form_token=form_token,
        actor_type='user',
        details={'form_type': form_type, 'section_count': section_count}
    )


def log_form_load_failed(error: str) -> Optional[AuditLog]:
    """Log a rejected schema document."""
    return log_action(
        action=AuditAction.FORM_LOAD_FAILED,
        action_category=AuditCategory.CREATE,
        resource_type='form_session',
        actor_type='user',
        success=False,
        error_message=error
    )


def log_field_changed(form_token: str, field_key: str,
                      visible_sections: int) -> Optional[AuditLog]:
    """Log a field edit. The value itself is not recorded."""
    return log_action(
        action=AuditAction.FIELD_CHANGED,
        action_category=AuditCategory.UPDATE,
        resource_type='field',
        resource_id=field_key,
        form_token=form_token,
        actor_type='user',
        details={'visible_sections': visible_sections}
    )


def log_validation_result(form_token: str, passed: bool,
                          error_keys: Optional[list] = None) -> Optional[AuditLog]:
    """Log the outcome of a validation pass."""
    return log_action(
        action=AuditAction.VALIDATION_PASSED if passed else AuditAction.VALIDATION_FAILED,
        action_category=AuditCategory.SYSTEM,
        resource_type='form_session',
        resource_id=form_token,
        form_token=form_token,
        actor_type='system',
        details={'error_count': len(error_keys), 'fields': error_keys} if error_keys else None,
        success=passed
    )


def log_submission_created(form_token: str, submission_id: int, values_sha256: str) -> Optional[AuditLog]:
    """Log a submission handed to the sink."""
    return log_action(
        action=AuditAction.SUBMISSION_CREATED,
        action_category=AuditCategory.SEND,
        resource_type='submission',
        resource_id=str(submission_id),
        form_token=form_token,
        submission_id=submission_id,
        actor_type='user',
        details={'values_sha256': values_sha256}
    )


def log_submission_rejected(form_token: str, reason: str) -> Optional[AuditLog]:
    """Log a submission attempt that was refused."""
    return log_action(
        action=AuditAction.SUBMISSION_REJECTED,
        action_category=AuditCategory.SEND,
        resource_type='form_session',
        resource_id=form_token,
        form_token=form_token,
        actor_type='user',
        success=False,
        error_message=reason
    )


def verify_audit_integrity() -> tuple:
    """
    Verify integrity of all audit log records.

    Returns:
        Tuple of (valid_count, invalid_count, invalid_ids)
    """
    valid_count = 0
    invalid_ids = []

    for log in AuditLog.query.all():
        if log.verify_integrity():
            valid_count += 1
        else:
            invalid_ids.append(log.id)

    return valid_count, len(invalid_ids), invalid_ids


def get_audit_trail_for_form(form_token: str) -> list:
    """Complete audit trail for a form session, oldest first."""
    logs = AuditLog.query.filter_by(form_token=form_token) \
                         .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc()) \
                         .all()
    return [log.to_dict() for log in logs]

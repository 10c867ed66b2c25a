"""
Database models for the form engine service.

- FormSession holds one loaded schema and the state derived from it
- Submission stores a validated value set with an integrity hash
- AuditLog is the append-only audit trail
"""

import json
import hashlib
import secrets
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Dict, Optional

from formengine import db
from formengine.state import FormState


class SubmissionStatus(PyEnum):
    """Submission lifecycle states."""
    PENDING = 'pending'
    COMPLETED = 'completed'


def _dump(data: Any) -> str:
    """Serialize with stable ordering."""
    return json.dumps(data, indent=2, sort_keys=True)


class FormSession(db.Model):
    """
    A form being filled in: the schema document plus its runtime state.
    """
    __tablename__ = 'form_sessions'

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(64), unique=True, nullable=False,
                      default=lambda: secrets.token_urlsafe(24))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    form_type = db.Column(db.String(200), nullable=True)
    schema_json = db.Column(db.Text, nullable=False)
    state_json = db.Column(db.Text, nullable=False)

    submissions = db.relationship('Submission', backref='form_session', lazy='dynamic')

    def __repr__(self):
        return f'<FormSession {self.id} - {self.form_type}>'

    def get_schema_document(self) -> Dict[str, Any]:
        return json.loads(self.schema_json)

    def set_schema_document(self, document: Dict[str, Any]):
        self.schema_json = _dump(document)

    def get_state(self) -> FormState:
        return FormState.from_dict(json.loads(self.state_json))

    def set_state(self, state: FormState):
        self.state_json = _dump(state.to_dict())

    def to_dict(self):
        state = self.get_state()
        return {
            'token': self.token,
            'form_type': self.form_type,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'state': state.to_dict(),
        }


class Submission(db.Model):
    """A validated value set handed to the submission sink."""
    __tablename__ = 'submissions'

    id = db.Column(db.Integer, primary_key=True)
    form_session_id = db.Column(db.Integer, db.ForeignKey('form_sessions.id'), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    ip_address = db.Column(db.String(45), nullable=True)

    values_json = db.Column(db.Text, nullable=False)
    values_sha256 = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(20), default=SubmissionStatus.PENDING.value, nullable=False)
    error_message = db.Column(db.Text, nullable=True)

    audit_logs = db.relationship('AuditLog', backref='submission', lazy='dynamic')

    def __repr__(self):
        return f'<Submission {self.id} - {self.status}>'

    def get_values(self) -> Dict[str, Any]:
        return json.loads(self.values_json)

    def set_values(self, values: Dict[str, Any]):
        """Serialize the values with stable ordering and record their hash."""
        self.values_json = _dump(values)
        self.values_sha256 = hashlib.sha256(self.values_json.encode('utf-8')).hexdigest()

    def verify_integrity(self) -> bool:
        return self.values_sha256 == hashlib.sha256(self.values_json.encode('utf-8')).hexdigest()

    def to_dict(self):
        return {
            'id': self.id,
            'form_token': self.form_session.token if self.form_session else None,
            'created_at': self.created_at.isoformat(),
            'status': self.status,
            'values_sha256': self.values_sha256,
            'error_message': self.error_message,
        }


class AuditLog(db.Model):
    """
    Immutable audit trail for all significant actions.

    This table is append-only. Records are never modified or deleted.
    """
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)

    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    actor_type = db.Column(db.String(20), nullable=False)  # 'user' or 'system'
    actor_id = db.Column(db.String(100), nullable=True)

    action = db.Column(db.String(50), nullable=False)
    action_category = db.Column(db.String(20), nullable=False)

    form_token = db.Column(db.String(64), nullable=True, index=True)
    submission_id = db.Column(db.Integer, db.ForeignKey('submissions.id'), nullable=True)
    resource_type = db.Column(db.String(50), nullable=False)
    resource_id = db.Column(db.String(200), nullable=True)

    details_json = db.Column(db.Text, nullable=True)

    success = db.Column(db.Boolean, nullable=False)
    error_message = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)

    # Integrity hash (prevents tampering)
    integrity_hash = db.Column(db.String(64), nullable=False)

    def __repr__(self):
        return f'<AuditLog {self.id} - {self.action} by {self.actor_type}>'

    def to_dict(self):
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'actor_type': self.actor_type,
            'actor_id': self.actor_id,
            'action': self.action,
            'action_category': self.action_category,
            'form_token': self.form_token,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'submission_id': self.submission_id,
            'details': json.loads(self.details_json) if self.details_json else None,
            'success': self.success,
            'error_message': self.error_message
        }

    def compute_integrity_hash(self) -> str:
        """Compute hash of this record's content for tamper detection."""
        content = (f'{self.timestamp}{self.actor_type}{self.actor_id}{self.action}'
                   f'{self.resource_type}{self.resource_id}{self.details_json}')
        return hashlib.sha256(content.encode()).hexdigest()

    def verify_integrity(self) -> bool:
        return self.integrity_hash == self.compute_integrity_hash()


def get_form_session(token: str) -> Optional[FormSession]:
    return FormSession.query.filter_by(token=token).first()

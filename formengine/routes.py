"""
Flask routes for the form engine service.

The API is the boundary layer: it holds each form session's state in the
database, hands it to the engine for every transaction and stores the
state the engine returns.
"""

from flask import Blueprint, current_app, jsonify, request

from formengine import db
from formengine.attachments import Attachment, accept_uploads, encode_attachments, remove_attachment
from formengine.audit_logger import (
    log_field_changed, log_form_load_failed, log_form_loaded,
    log_submission_created, log_submission_rejected, log_validation_result
)
from formengine.engine import (
    begin_submission, change_field, finish_submission, load_form, run_validation, toggle_section
)
from formengine.exceptions import (
    ReadOnlyFieldError, SchemaError, UnknownFieldError
)
from formengine.models import FormSession, Submission, SubmissionStatus, get_form_session
from formengine.render_plan import build_render_plan, render_plan_to_dict
from formengine.schema import parse_schema
from formengine.security import (
    RATE_LIMITS, generate_csrf_token, get_client_ip, limiter, sanitize_field_value,
    sanitize_payload
)
from formengine.walker import find_field


# Create blueprints
main_bp = Blueprint('main', __name__)
api_bp = Blueprint('api', __name__, url_prefix='/api')


def _error(message: str, code: str, status: int, field: str = ''):
    return jsonify({
        'ok': False,
        'errors': [{'field': field, 'message': message, 'code': code}]
    }), status


def _session_response(form_session: FormSession, schema, state, status: int = 200, **extra):
    body = form_session.to_dict()
    body.update({
        'ok': True,
        'status_message': schema.status_message if schema else None,
        'state': state.to_dict(),
        'sections': render_plan_to_dict(build_render_plan(schema, state)),
    })
    body.update(extra)
    return jsonify(body), status


def _open_session(token: str):
    """Load a form session with its parsed schema and state, or None."""
    form_session = get_form_session(token)
    if form_session is None:
        return None, None, None
    schema = parse_schema(form_session.get_schema_document())
    return form_session, schema, form_session.get_state()


def _save_state(form_session: FormSession, state):
    form_session.set_state(state)
    db.session.commit()


@main_bp.route('/health')
def health():
    """Liveness probe."""
    return jsonify({'ok': True}), 200


@api_bp.route('/csrf-token', methods=['GET'])
def api_csrf_token():
    """CSRF token for the POST endpoints."""
    return jsonify({'ok': True, 'csrf_token': generate_csrf_token()}), 200


@api_bp.route('/forms', methods=['POST'])
@limiter.limit(RATE_LIMITS['load'])
def api_load_form():
    """
    Load a schema document and start a form session.

    Returns:
        JSON response with the session token, initial state and render plan
    """
    document = request.get_json(silent=True)
    if not document:
        return _error('No schema document provided', 'missing_schema', 400)

    document = sanitize_payload(document)

    try:
        schema = parse_schema(document)
    except SchemaError as e:
        log_form_load_failed(str(e))
        return _error(str(e), 'invalid_schema', 400)

    try:
        state = load_form(schema)

        form_session = FormSession(form_type=schema.form_type)
        form_session.set_schema_document(document)
        form_session.set_state(state)
        db.session.add(form_session)
        db.session.commit()

        log_form_loaded(form_session.token, schema.form_type, len(schema.sections))

        return _session_response(form_session, schema, state, status=201)

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Form load error: {str(e)}')
        return _error('Failed to load form', 'load_error', 500)


@api_bp.route('/forms/<token>', methods=['GET'])
def api_get_form(token):
    """Current state and render plan of a form session."""
    form_session, schema, state = _open_session(token)
    if form_session is None:
        return _error('Form session not found', 'not_found', 404)
    return _session_response(form_session, schema, state)


@api_bp.route('/forms/<token>/fields', methods=['POST'])
@limiter.limit(RATE_LIMITS['field_change'])
def api_change_field(token):
    """
    Apply a field edit: {"field_key": ..., "value": ...}.

    Returns:
        JSON response with the updated state and render plan
    """
    form_session, schema, state = _open_session(token)
    if form_session is None:
        return _error('Form session not found', 'not_found', 404)

    body = request.get_json(silent=True) or {}
    field_key = body.get('field_key')
    if not field_key:
        return _error('field_key is required', 'missing_field_key', 400)

    try:
        state = change_field(schema, state, field_key, sanitize_field_value(body.get('value', '')))
    except UnknownFieldError:
        return _error('Unknown field', 'unknown_field', 404, field=field_key)
    except ReadOnlyFieldError:
        return _error('Field is read-only', 'read_only', 409, field=field_key)

    _save_state(form_session, state)
    log_field_changed(token, field_key, len(state.visible_sections))

    return _session_response(form_session, schema, state)


@api_bp.route('/forms/<token>/attachments', methods=['POST'])
@limiter.limit(RATE_LIMITS['field_change'])
def api_add_attachments(token):
    """
    Add uploads to an attachment field.

    Body: {"field_key": ..., "uploads": [{"filename", "content_type", "data"}]}
    where data is base64 encoded.
    """
    form_session, schema, state = _open_session(token)
    if form_session is None:
        return _error('Form session not found', 'not_found', 404)

    body = request.get_json(silent=True) or {}
    field_key = body.get('field_key') or ''
    position = find_field(schema, field_key) if schema else None
    if position is None:
        return _error('Unknown field', 'unknown_field', 404, field=field_key)
    if not position.field.kind.is_attachment:
        return _error('Field does not accept attachments', 'not_attachment', 400, field=field_key)

    try:
        uploads = [Attachment.from_dict(u) for u in body.get('uploads') or [] if isinstance(u, dict)]
    except ValueError as e:
        return _error(str(e), 'invalid_upload', 400, field=field_key)

    outcome = accept_uploads(position.field, state.get_value(field_key), uploads)
    value = [a.to_dict() if isinstance(a, Attachment) else a for a in outcome.value]

    try:
        state = change_field(schema, state, field_key, value)
    except ReadOnlyFieldError:
        return _error('Field is read-only', 'read_only', 409, field=field_key)

    _save_state(form_session, state)
    return _session_response(form_session, schema, state, rejected=outcome.rejected)


@api_bp.route('/forms/<token>/attachments/remove', methods=['POST'])
def api_remove_attachment(token):
    """Remove one attachment: {"field_key": ..., "index": n}."""
    form_session, schema, state = _open_session(token)
    if form_session is None:
        return _error('Form session not found', 'not_found', 404)

    body = request.get_json(silent=True) or {}
    field_key = body.get('field_key') or ''
    try:
        index = int(body.get('index'))
    except (TypeError, ValueError):
        return _error('index must be an integer', 'invalid_index', 400, field=field_key)

    try:
        state = change_field(schema, state, field_key,
                             remove_attachment(state.get_value(field_key), index))
    except UnknownFieldError:
        return _error('Unknown field', 'unknown_field', 404, field=field_key)
    except ReadOnlyFieldError:
        return _error('Field is read-only', 'read_only', 409, field=field_key)

    _save_state(form_session, state)
    return _session_response(form_session, schema, state)


@api_bp.route('/forms/<token>/toggle', methods=['POST'])
def api_toggle_section(token):
    """Expand or collapse a section or subsection: {"key": ...}."""
    form_session, schema, state = _open_session(token)
    if form_session is None:
        return _error('Form session not found', 'not_found', 404)

    body = request.get_json(silent=True) or {}
    key = body.get('key')
    if not key:
        return _error('key is required', 'missing_key', 400)

    state = toggle_section(state, key)
    _save_state(form_session, state)
    return _session_response(form_session, schema, state)


@api_bp.route('/forms/<token>/validate', methods=['POST'])
@limiter.limit(RATE_LIMITS['validate'])
def api_validate(token):
    """
    Run a validation pass.

    Returns:
        200 when valid, 422 with errors and the first failing field key
    """
    form_session, schema, state = _open_session(token)
    if form_session is None:
        return _error('Form session not found', 'not_found', 404)

    state, result = run_validation(schema, state)
    _save_state(form_session, state)
    log_validation_result(token, result.is_valid, list(result.errors))

    if result.is_valid:
        return jsonify({'ok': True, 'errors': [], 'first_error_key': None}), 200
    return jsonify(result.to_dict()), 422


@api_bp.route('/forms/<token>/submit', methods=['POST'])
@limiter.limit(RATE_LIMITS['submit'])
def api_submit(token):
    """
    Validate and persist a submission.

    Returns:
        201 with the submission id, 422 when invalid, 409 while another
        submission is in progress
    """
    form_session, schema, state = _open_session(token)
    if form_session is None:
        return _error('Form session not found', 'not_found', 404)

    if state.submitting:
        log_submission_rejected(token, 'submission_in_progress')
        return _error('A submission is already in progress', 'submission_in_progress', 409)

    outcome = begin_submission(schema, state)

    state = outcome.state
    _save_state(form_session, state)

    if not outcome.accepted:
        log_submission_rejected(token, 'validation_failed')
        return jsonify(outcome.result.to_dict()), 422

    submission = None
    try:
        submission = Submission(
            form_session_id=form_session.id,
            ip_address=get_client_ip(),
        )
        submission.set_values(encode_attachments(schema, outcome.values))
        submission.status = SubmissionStatus.COMPLETED.value
        db.session.add(submission)

        state = finish_submission(state)
        form_session.set_state(state)
        db.session.commit()

        log_submission_created(token, submission.id, submission.values_sha256)

        return jsonify({
            'ok': True,
            'submission_id': submission.id,
            'values_sha256': submission.values_sha256,
            'message': 'Form submitted successfully'
        }), 201

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Submission error: {str(e)}')
        try:
            _save_state(form_session, finish_submission(state))
        except Exception as db_error:
            current_app.logger.error(f'Failed to clear submission flag: {str(db_error)}')
        return _error('Failed to submit form', 'submission_error', 500)


@api_bp.route('/submissions/<int:submission_id>', methods=['GET'])
def api_get_submission(submission_id):
    """Stored submission values with an integrity check."""
    submission = db.session.get(Submission, submission_id)
    if submission is None:
        return _error('Submission not found', 'not_found', 404)

    body = submission.to_dict()
    body['ok'] = True
    body['values'] = submission.get_values()
    body['integrity_valid'] = submission.verify_integrity()
    return jsonify(body), 200

"""
Engine Operations

Each user interaction is one synchronous transaction: it takes the schema
and the current FormState and returns a new FormState. Inputs are checked
before any state is built, so a rejected transaction leaves the caller's
state as it was.

Transactions:
=============
- change_field: write a value, clear that field's error, resolve dependencies
- toggle_section: expand or collapse a section or subsection
- run_validation: replace the error map with a fresh validation pass
- begin_submission / finish_submission: set and clear the submission busy flag
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from formengine.dependencies import RuleIndex, on_field_changed
from formengine.exceptions import (
    FormNotLoadedError, ReadOnlyFieldError, UnknownFieldError
)
from formengine.schema import FormSchema
from formengine.state import FormState, initialize, toggle_section as _toggle
from formengine.validation import ValidationResult, validate_form
from formengine.walker import find_field, walk_fields

logger = logging.getLogger(__name__)


@dataclass
class SubmissionOutcome:
    """Result of a submission attempt."""
    state: FormState
    result: ValidationResult
    values: Dict[str, Any] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.result.is_valid

    @property
    def first_error_key(self) -> Optional[str]:
        return self.result.first_error_key


def _require_loaded(schema: Optional[FormSchema], state: FormState) -> FormSchema:
    if schema is None or not state.initialized:
        raise FormNotLoadedError('No form schema is loaded')
    return schema


def load_form(schema: Optional[FormSchema]) -> FormState:
    """Initial state for a freshly loaded schema."""
    return initialize(schema)


def change_field(schema: Optional[FormSchema], state: FormState, field_key: str,
                 value: Any) -> FormState:
    """
    Apply a field edit.

    Raises:
        FormNotLoadedError: No schema is loaded
        UnknownFieldError: The key is not part of the schema
        ReadOnlyFieldError: The field is read-only
    """
    schema = _require_loaded(schema, state)

    position = find_field(schema, field_key)
    if position is None:
        raise UnknownFieldError(field_key)
    if position.field.read_only:
        raise ReadOnlyFieldError(field_key)

    values = dict(state.values)
    values[field_key] = position.field.kind.coerce(value)

    errors = {k: v for k, v in state.errors.items() if k != field_key}

    visible, values = on_field_changed(
        field_key,
        values[field_key],
        RuleIndex(schema.dependency_rules),
        schema,
        state.visible_sections,
        values,
    )

    logger.debug('Field %s changed; %d sections visible', field_key, len(visible))
    return state.evolve(values=values, visible_sections=visible, errors=errors)


def toggle_section(state: FormState, key: str) -> FormState:
    """Expand or collapse a section name or subsection expansion key."""
    if not state.initialized:
        raise FormNotLoadedError('No form schema is loaded')
    return _toggle(state, key)


def run_validation(schema: Optional[FormSchema], state: FormState,
                   now: Optional[datetime] = None) -> Tuple[FormState, ValidationResult]:
    """Validate the current values; the returned state carries the fresh error map."""
    result = validate_form(schema, state.values, state.visible_sections, now=now)
    return state.evolve(errors=result.messages), result


def submission_values(schema: FormSchema, state: FormState) -> Dict[str, Any]:
    """Values of every field in a visible section, in walk order."""
    return {
        position.key: state.get_value(position.key)
        for position in walk_fields(schema, visible_sections=state.visible_sections)
    }


def begin_submission(schema: Optional[FormSchema], state: FormState,
                     now: Optional[datetime] = None) -> SubmissionOutcome:
    """
    Validate and, when valid, mark a submission as in progress.

    The busy flag is not consulted; callers refuse a second submission
    while it is set.

    Raises:
        FormNotLoadedError: No schema is loaded
    """
    schema = _require_loaded(schema, state)

    validated, result = run_validation(schema, state, now=now)
    if not result.is_valid:
        logger.debug('Submission rejected: %d invalid fields, first %s',
                     len(result.errors), result.first_error_key)
        return SubmissionOutcome(state=validated, result=result)

    return SubmissionOutcome(
        state=validated.evolve(submitting=True),
        result=result,
        values=submission_values(schema, validated),
    )


def finish_submission(state: FormState) -> FormState:
    """Clear the busy flag once the submission sink has finished."""
    return state.evolve(submitting=False)

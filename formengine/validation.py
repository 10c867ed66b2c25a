"""
Validation engine for schema-driven form values.

Validation Rules Documentation:
===============================

A validation pass walks visible sections -> subsections -> fields in walk
order, skipping fields flagged hidden. Each remaining field is checked
against the rules below, in this order. When several rules fail for the
same field the LAST failing rule's message is kept.

1. MANDATORY
   - Mandatory field whose trimmed value is empty: "<name> is required"

2. MAX LENGTH
   - Value present and longer than the declared max length

3. MIN LENGTH
   - Value present and shorter than the declared min length

4. NUMBER (input type NUMBER)
   - Value present and not parseable as a number

5. DATE (input type DATE)
   - Value present and not parseable as a calendar date
   - Future dates disallowed and the date is after the current moment;
     this message replaces the invalid-date message when both apply

6. ATTACHMENTS (IMAGE, VIDEO)
   - Mandatory and no attachments: required-attachment message
   - Mandatory IMAGE only: subsection min capture > 0 and fewer attachments
   - Mandatory IMAGE only: subsection max capture > 0 and more attachments
   - Optional attachment fields are never checked
   - Attachment fields skip rules 1-5, 7 and 8

7. EMAIL HEURISTIC (input type TEXT)
   - Value present and contains '@': must look like an email address

8. PHONE HEURISTIC (input type NUMBER)
   - Value present and the field name contains 'phone' or 'mobile'
     (case-insensitive): exactly 10 digits once non-digits are stripped

A field appears in the result only if at least one rule failed. The form
is valid when the result holds no errors. The pass never modifies values
or visibility.
"""

import math
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AbstractSet, Dict, List, Mapping, Optional

from formengine.field_types import AttachmentKind, InputType, coerce_to_list
from formengine.schema import Field, FormSchema, SubSection
from formengine.walker import walk_fields


@dataclass
class ValidationError:
    """A single validation failure for one field."""
    field: str
    message: str
    code: str
    section: str = ''


@dataclass
class ValidationResult:
    """
    Container for the outcome of one validation pass.

    errors is keyed by field key. Keys keep the position of their first
    failure, so iteration follows walk order.
    """
    errors: Dict[str, ValidationError] = field(default_factory=OrderedDict)
    is_valid: bool = True

    def add_error(self, field_key: str, message: str, code: str = 'invalid', section: str = ''):
        """Record a failure, replacing any earlier message for the same field."""
        self.errors[field_key] = ValidationError(field_key, message, code, section)
        self.is_valid = False

    @property
    def messages(self) -> Dict[str, str]:
        """Field key -> message mapping."""
        return {key: error.message for key, error in self.errors.items()}

    @property
    def first_error_key(self) -> Optional[str]:
        """Key of the first failing field in walk order."""
        return next(iter(self.errors), None)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            'ok': self.is_valid,
            'errors': [
                {'field': e.field, 'message': e.message, 'code': e.code, 'section': e.section}
                for e in self.errors.values()
            ],
            'first_error_key': self.first_error_key,
        }

    def get_errors_by_section(self) -> Dict[str, List[ValidationError]]:
        """Group errors by section for UI display."""
        by_section = OrderedDict()
        for error in self.errors.values():
            by_section.setdefault(error.section or 'general', []).append(error)
        return by_section


# Regex patterns
EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PHONE_PATTERN = re.compile(r'^[0-9]{10}$')
NON_DIGIT_PATTERN = re.compile(r'\D')

PHONE_NAME_HINTS = ('phone', 'mobile')

DATE_FORMATS = ['%Y-%m-%d', '%d/%m/%Y', '%m/%d/%Y', '%d-%m-%Y', '%Y/%m/%d', '%d %b %Y', '%d %B %Y']


def parse_number(value: str) -> Optional[float]:
    """Parse a numeric string; blank counts as zero."""
    text = value.strip()
    if text == '':
        return 0.0
    if '_' in text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isnan(number):
        return None
    return number


def parse_date(value: str) -> Optional[datetime]:
    """
    Parse a calendar date or datetime.

    Naive results are treated as UTC so they compare with an aware clock.
    """
    text = value.strip()
    parsed = None

    # Try ISO format
    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        pass

    if parsed is None:
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def check_mandatory(field: Field, value: str, key: str, result: ValidationResult, section: str = ''):
    if field.mandatory and field.kind.is_empty(value):
        result.add_error(key, f'{field.name} is required', 'required', section)


def check_length(field: Field, value: str, key: str, result: ValidationResult, section: str = ''):
    if not value:
        return
    if field.max_length is not None and len(value) > field.max_length:
        result.add_error(key, f'{field.name} must be at most {field.max_length} characters',
                         'max_length', section)
    if field.min_length is not None and len(value) < field.min_length:
        result.add_error(key, f'{field.name} must be at least {field.min_length} characters',
                         'min_length', section)


def check_number(field: Field, value: str, key: str, result: ValidationResult, section: str = ''):
    if field.input_type == InputType.NUMBER and value and parse_number(value) is None:
        result.add_error(key, f'{field.name} must be a valid number', 'number', section)


def check_date(field: Field, value: str, key: str, result: ValidationResult,
               now: datetime, section: str = ''):
    if field.input_type != InputType.DATE or not value:
        return
    parsed = parse_date(value)
    if parsed is None:
        result.add_error(key, f'{field.name} must be a valid date', 'date', section)
        return
    if not field.future_date_allowed and parsed > now:
        result.add_error(key, f'{field.name} cannot be a future date', 'future_date', section)


def check_attachments(field: Field, sub_section: SubSection, value: Any, key: str,
                      result: ValidationResult, section: str = ''):
    """Required and count checks for image and video fields."""
    kind = field.kind
    if not isinstance(kind, AttachmentKind) or not field.mandatory:
        return

    attachments = coerce_to_list(value)
    count = len(attachments)
    noun = kind.noun

    if kind.is_empty(attachments):
        result.add_error(key, f'{field.name} is required. Please upload at least one {noun}.',
                         'required', section)

    if not kind.count_bounds:
        return

    minimum = sub_section.min_attachments
    if minimum > 0 and count < minimum:
        result.add_error(key, f'{field.name} requires at least {minimum} {noun}(s).',
                         'min_count', section)

    maximum = sub_section.max_attachments
    if maximum > 0 and count > maximum:
        result.add_error(key, f'{field.name} allows maximum {maximum} {noun}(s).',
                         'max_count', section)


def check_email(field: Field, value: str, key: str, result: ValidationResult, section: str = ''):
    if field.input_type == InputType.TEXT and value and '@' in value:
        if not EMAIL_PATTERN.match(value):
            result.add_error(key, f'{field.name} must be a valid email address', 'email', section)


def check_phone(field: Field, value: str, key: str, result: ValidationResult, section: str = ''):
    if field.input_type != InputType.NUMBER or not value:
        return
    name = field.name.lower()
    if not any(hint in name for hint in PHONE_NAME_HINTS):
        return
    if not PHONE_PATTERN.match(NON_DIGIT_PATTERN.sub('', value)):
        result.add_error(key, f'{field.name} must be a valid 10-digit phone number', 'phone', section)


def validate_field(field: Field, sub_section: SubSection, raw_value: Any, key: str,
                   result: ValidationResult, now: datetime, section: str = ''):
    """Run every rule for one field, in rule order."""
    if field.kind.is_attachment:
        check_attachments(field, sub_section, raw_value, key, result, section)
        return

    value = field.kind.coerce(raw_value)

    check_mandatory(field, value, key, result, section)
    check_length(field, value, key, result, section)
    check_number(field, value, key, result, section)
    check_date(field, value, key, result, now, section)
    check_email(field, value, key, result, section)
    check_phone(field, value, key, result, section)


def validate_form(schema: Optional[FormSchema],
                  values: Mapping[str, Any],
                  visible_sections: AbstractSet[str],
                  now: Optional[datetime] = None) -> ValidationResult:
    """
    Run a full validation pass.

    Args:
        schema: The loaded schema; None means no form is loaded
        values: Field key -> current value
        visible_sections: Names of currently visible sections
        now: Reference moment for the future-date rule (defaults to the current UTC time)

    Returns:
        ValidationResult; a form with no schema is never valid
    """
    result = ValidationResult()
    if schema is None:
        result.is_valid = False
        return result

    moment = _as_aware(now) if now is not None else datetime.now(timezone.utc)

    for position in walk_fields(schema, visible_sections=visible_sections, include_hidden=False):
        validate_field(
            position.field,
            position.sub_section,
            values.get(position.key, ''),
            position.key,
            result,
            moment,
            section=position.section.name,
        )

    return result

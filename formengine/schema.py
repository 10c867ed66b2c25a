"""
Schema Module

Parses a form schema document into an immutable object model. The schema
is read-only for the whole session; every runtime structure is derived
from it.

Accepted document shapes:
- The full envelope: {"statusMessage", "statusCode", "status",
  "data": {"templateWrap": {...}}}
- A bare templateWrap: {"formType", "sections", "dependentSectionsDetails"}

Schema-load errors raise SchemaError. A None document is not an error:
parse_schema(None) returns None and the engine stays in its pre-init state.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from formengine.exceptions import SchemaError
from formengine.field_types import FieldKind, FieldType, InputType, get_kind, parse_options
from formengine.keys import derive_key

logger = logging.getLogger(__name__)


def _to_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)


def _to_int(value: Any) -> Optional[int]:
    """Parse a bound that may arrive as a string; unparseable means no bound."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _to_str(value: Any) -> str:
    return '' if value is None else str(value)


@dataclass(frozen=True)
class Field:
    """Atomic schema-declared input unit."""
    name: str
    reference_id: str = ''
    field_type: FieldType = FieldType.INPUT
    input_type: InputType = InputType.TEXT
    mandatory: bool = False
    read_only: bool = False
    hidden: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    future_date_allowed: bool = True
    options: Tuple[str, ...] = ()
    default_value: str = ''
    order: Optional[int] = None
    placeholder: str = ''

    @property
    def kind(self) -> FieldKind:
        return get_kind(self.field_type)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Field':
        if not isinstance(data, dict):
            raise SchemaError('Field entries must be objects')

        raw_type = _to_str(data.get('fieldType') or 'INPUT').strip().upper()
        try:
            field_type = FieldType(raw_type)
        except ValueError:
            raise SchemaError(f'Unknown field type {raw_type!r} on field {data.get("name")!r}')

        raw_input = _to_str(data.get('inputType') or 'TEXT').strip().upper()
        try:
            input_type = InputType(raw_input)
        except ValueError:
            input_type = InputType.OTHER

        # Only an explicit false disallows future dates
        future_flag = data.get('isFutureDate')
        future_date_allowed = True if future_flag is None else _to_bool(future_flag, True)

        return cls(
            name=_to_str(data.get('name')),
            reference_id=_to_str(data.get('sfField')),
            field_type=field_type,
            input_type=input_type,
            mandatory=_to_bool(data.get('mandatory')),
            read_only=_to_bool(data.get('isReadOnly')),
            hidden=_to_bool(data.get('isHidden')),
            min_length=_to_int(data.get('valueMinLength')),
            max_length=_to_int(data.get('valueLength')),
            future_date_allowed=future_date_allowed,
            options=parse_options(data.get('dropDownValues')),
            default_value=_to_str(data.get('value')),
            order=_to_int(data.get('order')),
            placeholder=_to_str(data.get('placeholder')),
        )


@dataclass(frozen=True)
class SubSection:
    """Second-level grouping of fields."""
    name: str
    order: int = 0
    fields: Tuple[Field, ...] = ()
    min_attachments: int = 0
    max_attachments: int = 0
    pre_populate: bool = False
    placeholder: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SubSection':
        if not isinstance(data, dict):
            raise SchemaError('Subsection entries must be objects')
        return cls(
            name=_to_str(data.get('name')),
            order=_to_int(data.get('order')) or 0,
            fields=tuple(Field.from_dict(f) for f in data.get('fields') or []),
            min_attachments=_to_int(data.get('minImageCapture')) or 0,
            max_attachments=_to_int(data.get('maxImageCapture')) or 0,
            pre_populate=_to_bool(data.get('isPrePopulateData')),
            placeholder=_to_str(data.get('placeholder')),
        )


@dataclass(frozen=True)
class Section:
    """Top-level grouping; the unit of visibility."""
    name: str
    order: int = 0
    sub_sections: Tuple[SubSection, ...] = ()
    pre_populate: bool = False
    placeholder: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Section':
        if not isinstance(data, dict):
            raise SchemaError('Section entries must be objects')
        return cls(
            name=_to_str(data.get('name')),
            order=_to_int(data.get('order')) or 0,
            sub_sections=tuple(SubSection.from_dict(s) for s in data.get('subSections') or []),
            pre_populate=_to_bool(data.get('isPrePopulateData')),
            placeholder=_to_str(data.get('placeholder')),
        )


@dataclass(frozen=True)
class DependencyRule:
    """
    Declarative visibility rule.

    When the field identified by (section_name, field_name) holds trigger_value
    the dependent section is shown, otherwise it is hidden and cleared.
    field_name is the triggering field's external reference id.
    """
    section_name: str
    field_name: str
    trigger_value: str
    dependent_section: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DependencyRule':
        if not isinstance(data, dict):
            raise SchemaError('Dependency rules must be objects')
        return cls(
            section_name=_to_str(data.get('sectionName')),
            field_name=_to_str(data.get('fieldName')),
            trigger_value=_to_str(data.get('value')),
            dependent_section=_to_str(data.get('dependentSectionValue')),
        )


@dataclass(frozen=True)
class FormSchema:
    """A parsed form schema."""
    form_type: str = ''
    sections: Tuple[Section, ...] = ()
    dependency_rules: Tuple[DependencyRule, ...] = ()
    status_message: str = ''

    def section_names(self) -> List[str]:
        return [section.name for section in self.sections]


def _unwrap(document: Dict[str, Any]) -> Tuple[Dict[str, Any], str]:
    """Return the templateWrap object and the envelope's status message."""
    status_message = ''
    if 'data' in document and isinstance(document['data'], dict):
        status_message = _to_str(document.get('statusMessage'))
        template = document['data'].get('templateWrap')
        if not isinstance(template, dict):
            raise SchemaError('Schema envelope has no templateWrap object')
        return template, status_message
    if 'templateWrap' in document:
        template = document['templateWrap']
        if not isinstance(template, dict):
            raise SchemaError('templateWrap must be an object')
        return template, status_message
    return document, status_message


def parse_schema(document: Optional[Dict[str, Any]]) -> Optional[FormSchema]:
    """
    Parse a schema document.

    Args:
        document: Parsed JSON document, or None when no schema is available

    Returns:
        FormSchema, or None for a None document

    Raises:
        SchemaError: If the document is malformed or two fields share a key
    """
    if document is None:
        return None
    if not isinstance(document, dict):
        raise SchemaError('Schema document must be an object')

    template, status_message = _unwrap(document)

    sections = template.get('sections')
    if not isinstance(sections, list):
        raise SchemaError('Schema has no sections list')

    rules = template.get('dependentSectionsDetails') or []
    if not isinstance(rules, list):
        raise SchemaError('dependentSectionsDetails must be a list')

    schema = FormSchema(
        form_type=_to_str(template.get('formType')),
        sections=tuple(Section.from_dict(s) for s in sections),
        dependency_rules=tuple(DependencyRule.from_dict(r) for r in rules),
        status_message=status_message,
    )

    _check_unique_keys(schema)

    logger.debug(
        'Loaded schema %r: %d sections, %d dependency rules',
        schema.form_type, len(schema.sections), len(schema.dependency_rules)
    )
    return schema


def _check_unique_keys(schema: FormSchema) -> None:
    seen = set()
    for section in schema.sections:
        for sub_section in section.sub_sections:
            for field in sub_section.fields:
                key = derive_key(section.name, sub_section.name, field)
                if key in seen:
                    raise SchemaError(f'Duplicate field key {key!r}')
                seen.add(key)

"""
Field Type Variants

Every field declares one type tag from a closed set. Each tag maps to a
FieldKind that owns how a stored value is coerced and which validation
contributions apply to it.

Type Tags:
==========

INPUT              single line text        scalar
MULTILINE_INPUT    multiline text          scalar
DROPDOWN           single choice           scalar, options
RADIO              radio group             scalar, options
CHECKBOX           checkbox                scalar ('true' when ticked)
DATE_PICKER        date                    scalar
YEAR_PICKER        year                    scalar
MULTIPLE_TEXTVALUE multi-value text        scalar (comma separated)
IMAGE              image attachments       list, subsection count bounds
VIDEO              video attachments       list, required check only

Coercion Rules:
===============
- Scalar kinds store strings. None and False become '', True becomes 'true',
  a list is joined with ', '.
- Attachment kinds store lists. A single value is treated as a one-element
  list and '' / None as an empty list.
"""

from enum import Enum
from typing import Any, Dict, List, Tuple


class FieldType(str, Enum):
    """Closed enumeration of field type tags."""
    INPUT = 'INPUT'
    MULTILINE_INPUT = 'MULTILINE_INPUT'
    DROPDOWN = 'DROPDOWN'
    RADIO = 'RADIO'
    CHECKBOX = 'CHECKBOX'
    DATE_PICKER = 'DATE_PICKER'
    YEAR_PICKER = 'YEAR_PICKER'
    MULTIPLE_TEXTVALUE = 'MULTIPLE_TEXTVALUE'
    IMAGE = 'IMAGE'
    VIDEO = 'VIDEO'


class InputType(str, Enum):
    """Input subtype that drives the numeric, date and heuristic checks."""
    TEXT = 'TEXT'
    NUMBER = 'NUMBER'
    DATE = 'DATE'
    OTHER = 'OTHER'


def coerce_to_text(value: Any) -> str:
    """Coerce a stored value to the string form scalar checks run against."""
    if value is None or value is False:
        return ''
    if value is True:
        return 'true'
    if isinstance(value, (list, tuple)):
        return ', '.join(coerce_to_text(v) for v in value if v not in (None, ''))
    return str(value)


def coerce_to_list(value: Any) -> List[Any]:
    """Coerce a stored value to a list of attachment references."""
    if isinstance(value, (list, tuple)):
        return list(value)
    if value is None or value == '':
        return []
    return [value]


def parse_options(raw: Any) -> Tuple[str, ...]:
    """
    Split a delimited option list.

    Args:
        raw: Pipe or comma delimited string

    Returns:
        Trimmed, non-empty options in declaration order
    """
    if not raw:
        return ()
    text = str(raw)
    delimiter = '|' if '|' in text else ','
    return tuple(opt.strip() for opt in text.split(delimiter) if opt.strip())


class FieldKind:
    """Behaviour shared by every scalar field type."""
    is_attachment = False
    has_options = False

    def __init__(self, field_type: FieldType):
        self.field_type = field_type

    def coerce(self, value: Any) -> Any:
        return coerce_to_text(value)

    def is_empty(self, value: Any) -> bool:
        return not self.coerce(value).strip()

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.field_type.value}>'


class ChoiceKind(FieldKind):
    """Dropdown and radio group."""
    has_options = True


class CheckboxKind(FieldKind):
    """Checkbox; ticked is stored as 'true', unticked as ''."""

    def coerce(self, value: Any) -> str:
        if isinstance(value, str):
            return 'true' if value.strip().lower() in ('true', '1', 'yes', 'on') else ''
        return 'true' if value is True or value == 1 else ''


class AttachmentKind(FieldKind):
    """
    Image or video attachments.

    Attributes:
        noun: Word used in messages ('image' or 'video')
        count_bounds: Whether subsection min/max capture counts apply
        accepted_types: MIME types accepted on upload
        max_size_mb: Per-file size limit on upload
        default_max_files: File count limit when the field declares none
    """
    is_attachment = True

    def __init__(self, field_type: FieldType, noun: str, count_bounds: bool,
                 accepted_types: Tuple[str, ...], max_size_mb: int, default_max_files: int):
        super().__init__(field_type)
        self.noun = noun
        self.count_bounds = count_bounds
        self.accepted_types = accepted_types
        self.max_size_mb = max_size_mb
        self.default_max_files = default_max_files

    def coerce(self, value: Any) -> List[Any]:
        return coerce_to_list(value)

    def is_empty(self, value: Any) -> bool:
        return len(coerce_to_list(value)) == 0


IMAGE_TYPES = ('image/jpeg', 'image/jpg', 'image/png', 'image/gif', 'image/webp')
VIDEO_TYPES = ('video/mp4', 'video/webm', 'video/ogg', 'video/quicktime')

KINDS: Dict[FieldType, FieldKind] = {
    FieldType.INPUT: FieldKind(FieldType.INPUT),
    FieldType.MULTILINE_INPUT: FieldKind(FieldType.MULTILINE_INPUT),
    FieldType.DROPDOWN: ChoiceKind(FieldType.DROPDOWN),
    FieldType.RADIO: ChoiceKind(FieldType.RADIO),
    FieldType.CHECKBOX: CheckboxKind(FieldType.CHECKBOX),
    FieldType.DATE_PICKER: FieldKind(FieldType.DATE_PICKER),
    FieldType.YEAR_PICKER: FieldKind(FieldType.YEAR_PICKER),
    FieldType.MULTIPLE_TEXTVALUE: FieldKind(FieldType.MULTIPLE_TEXTVALUE),
    FieldType.IMAGE: AttachmentKind(
        FieldType.IMAGE, noun='image', count_bounds=True,
        accepted_types=IMAGE_TYPES, max_size_mb=5, default_max_files=10
    ),
    FieldType.VIDEO: AttachmentKind(
        FieldType.VIDEO, noun='video', count_bounds=False,
        accepted_types=VIDEO_TYPES, max_size_mb=50, default_max_files=5
    ),
}


def get_kind(field_type: FieldType) -> FieldKind:
    """Look up the variant for a type tag."""
    return KINDS[field_type]

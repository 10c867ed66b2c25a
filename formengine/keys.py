"""
Field Key Deriver

A field key is the identity string that correlates a field's schema
position with its stored value, its validation error and its rendered
widget. Keys are a pure function of the schema, so they are stable
across re-renders.

Key Format:
===========
    <section>__<subsection>__<field name>__<reference id or order>

The reference id falls back to the field's order when empty. Reference ids
often contain FIELD_KEY_DELIMITER themselves ('Has_Pets__c'); section,
subsection and field names are assumed not to. parse_key relies on that.

Expansion keys for subsections use a separate, shorter delimiter:
    <section>-<subsection>
"""

from typing import TYPE_CHECKING, Tuple

if TYPE_CHECKING:
    from formengine.schema import Field

FIELD_KEY_DELIMITER = '__'
EXPANSION_KEY_DELIMITER = '-'


def key_suffix(field: 'Field') -> str:
    """Last key segment: the reference id, else the order, else ''."""
    if field.reference_id:
        return field.reference_id
    return '' if field.order is None else str(field.order)


def derive_key(section_name: str, sub_section_name: str, field: 'Field') -> str:
    """
    Compute the composite identity of a field.

    Args:
        section_name: Owning section name
        sub_section_name: Owning subsection name
        field: The field

    Returns:
        Field key string
    """
    return FIELD_KEY_DELIMITER.join([section_name, sub_section_name, field.name, key_suffix(field)])


def parse_key(field_key: str) -> Tuple[str, str]:
    """
    Recover the section name and reference id from a field key.

    The key is split at most three times, so a reference id that itself
    contains the delimiter (e.g. 'Has_Pets__c') is returned whole.

    Returns:
        Tuple of (section name, reference id or order)
    """
    parts = field_key.split(FIELD_KEY_DELIMITER, 3)
    if len(parts) < 4:
        return parts[0], ''
    return parts[0], parts[3]


def expansion_key(section_name: str, sub_section_name: str) -> str:
    """Key under which a subsection's expanded state is tracked."""
    return f'{section_name}{EXPANSION_KEY_DELIMITER}{sub_section_name}'

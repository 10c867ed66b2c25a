"""
Section/Field Tree Walker

Shared traversal used by state initialisation, dependency resolution,
validation, submission and the render plan.

Walk Order:
===========
1. Sections in list order
2. Subsections in list order within their section
3. Fields sorted by ascending order within their subsection; a missing
   order sorts as 0 and ties keep list position (stable sort)
"""

from dataclasses import dataclass
from typing import AbstractSet, Iterator, List, Optional

from formengine.keys import derive_key
from formengine.schema import Field, FormSchema, Section, SubSection


@dataclass(frozen=True)
class FieldPosition:
    """A field together with its place in the schema tree."""
    section: Section
    sub_section: SubSection
    field: Field
    key: str


def ordered_fields(sub_section: SubSection) -> List[Field]:
    """Fields of a subsection in walk order."""
    return sorted(sub_section.fields, key=lambda f: f.order or 0)


def walk_fields(schema: FormSchema,
                visible_sections: Optional[AbstractSet[str]] = None,
                include_hidden: bool = True,
                section_name: Optional[str] = None) -> Iterator[FieldPosition]:
    """
    Lazily yield every field position in walk order.

    Args:
        schema: The schema to traverse
        visible_sections: When given, sections not in this set are skipped
        include_hidden: When False, fields flagged hidden are skipped
        section_name: When given, only this section is traversed

    Yields:
        FieldPosition for each remaining field
    """
    for section in schema.sections:
        if section_name is not None and section.name != section_name:
            continue
        if visible_sections is not None and section.name not in visible_sections:
            continue
        for sub_section in section.sub_sections:
            for field in ordered_fields(sub_section):
                if not include_hidden and field.hidden:
                    continue
                yield FieldPosition(
                    section=section,
                    sub_section=sub_section,
                    field=field,
                    key=derive_key(section.name, sub_section.name, field),
                )


def find_field(schema: FormSchema, field_key: str) -> Optional[FieldPosition]:
    """Locate a field by key, or None if the schema has no such field."""
    for position in walk_fields(schema):
        if position.key == field_key:
            return position
    return None

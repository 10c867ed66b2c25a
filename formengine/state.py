"""
Form State

FormState is the explicit state object every engine operation takes and
returns. Operations never mutate the state they are given; they build a
new one, so a transaction that raises leaves the caller's state untouched.

State Initializer Rules:
========================
- Every section starts visible; dependency rules are not consulted
- Sections with the pre-populate flag start expanded
- Subsections with the pre-populate flag start expanded under their
  expansion key (section + '-' + subsection)
- Every field's value starts as its declared default, or ''
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Optional

from formengine.keys import expansion_key
from formengine.schema import FormSchema
from formengine.walker import walk_fields


@dataclass(frozen=True)
class FormState:
    """Runtime state of one form session."""
    values: Dict[str, Any] = field(default_factory=dict)
    visible_sections: FrozenSet[str] = frozenset()
    expanded_sections: FrozenSet[str] = frozenset()
    errors: Dict[str, str] = field(default_factory=dict)
    submitting: bool = False
    initialized: bool = True

    @classmethod
    def pre_init(cls) -> 'FormState':
        """The frozen state held while no schema is loaded."""
        return cls(initialized=False)

    def evolve(self, **changes) -> 'FormState':
        return replace(self, **changes)

    def get_value(self, field_key: str) -> Any:
        return self.values.get(field_key, '')

    def is_section_visible(self, section_name: str) -> bool:
        return section_name in self.visible_sections

    def is_expanded(self, key: str) -> bool:
        return key in self.expanded_sections

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for persistence; sets are emitted sorted."""
        return {
            'values': dict(self.values),
            'visible_sections': sorted(self.visible_sections),
            'expanded_sections': sorted(self.expanded_sections),
            'errors': dict(self.errors),
            'submitting': self.submitting,
            'initialized': self.initialized,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'FormState':
        if not data:
            return cls.pre_init()
        return cls(
            values=dict(data.get('values', {})),
            visible_sections=frozenset(data.get('visible_sections', [])),
            expanded_sections=frozenset(data.get('expanded_sections', [])),
            errors=dict(data.get('errors', {})),
            submitting=bool(data.get('submitting', False)),
            initialized=bool(data.get('initialized', True)),
        )


def initialize(schema: Optional[FormSchema]) -> FormState:
    """
    Derive the initial state of a schema.

    Runs once per schema load and is idempotent: the same schema always
    yields an equal state.

    Args:
        schema: Parsed schema, or None when no schema is available

    Returns:
        Initial FormState, or the pre-init state for None
    """
    if schema is None:
        return FormState.pre_init()

    values: Dict[str, Any] = {}
    visible = set()
    expanded = set()

    for section in schema.sections:
        visible.add(section.name)
        if section.pre_populate:
            expanded.add(section.name)
        for sub_section in section.sub_sections:
            if sub_section.pre_populate:
                expanded.add(expansion_key(section.name, sub_section.name))

    for position in walk_fields(schema):
        values[position.key] = position.field.default_value or ''

    return FormState(
        values=values,
        visible_sections=frozenset(visible),
        expanded_sections=frozenset(expanded),
    )


def toggle_section(state: FormState, key: str) -> FormState:
    """Flip the expanded flag of a section name or subsection expansion key."""
    expanded = set(state.expanded_sections)
    if key in expanded:
        expanded.remove(key)
    else:
        expanded.add(key)
    return state.evolve(expanded_sections=frozenset(expanded))

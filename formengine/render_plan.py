"""
Render Plan Module

Builds the per-field descriptors the widget layer paints from. The engine
never depends on what is rendered; it only supplies, for every field,
its type, key, current value and current error. The field key doubles as
the data attribute the widget layer uses to focus the first failing field.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from formengine.attachments import Attachment
from formengine.field_types import coerce_to_list
from formengine.keys import derive_key, expansion_key
from formengine.schema import FormSchema
from formengine.state import FormState
from formengine.walker import ordered_fields


@dataclass
class FieldDescriptor:
    """Everything the widget layer needs for one field."""
    key: str
    name: str
    field_type: str
    input_type: str
    value: Any
    error: Optional[str] = None
    options: List[str] = field(default_factory=list)
    placeholder: str = ''
    mandatory: bool = False
    read_only: bool = False
    future_date_allowed: bool = True


@dataclass
class SubSectionPlan:
    """A subsection with its renderable fields."""
    name: str
    expansion_key: str
    expanded: bool
    fields: List[FieldDescriptor] = field(default_factory=list)


@dataclass
class SectionPlan:
    """A visible section in the render plan."""
    name: str
    expanded: bool
    sub_sections: List[SubSectionPlan] = field(default_factory=list)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Attachment):
        return value.to_dict()
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def build_render_plan(schema: Optional[FormSchema], state: FormState) -> List[SectionPlan]:
    """
    Build the render plan for the current state.

    Args:
        schema: The loaded schema, or None
        state: Current form state

    Returns:
        Visible sections in schema order; subsections without a
        non-hidden field are left out
    """
    if schema is None or not state.initialized:
        return []

    plan = []
    for section in schema.sections:
        if not state.is_section_visible(section.name):
            continue

        section_plan = SectionPlan(name=section.name, expanded=state.is_expanded(section.name))

        for sub_section in section.sub_sections:
            sub_key = expansion_key(section.name, sub_section.name)
            sub_plan = SubSectionPlan(
                name=sub_section.name,
                expansion_key=sub_key,
                expanded=state.is_expanded(sub_key),
            )
            for field_def in ordered_fields(sub_section):
                if field_def.hidden:
                    continue
                key = derive_key(section.name, sub_section.name, field_def)
                value = state.get_value(key)
                if field_def.kind.is_attachment:
                    value = coerce_to_list(value)
                sub_plan.fields.append(FieldDescriptor(
                    key=key,
                    name=field_def.name,
                    field_type=field_def.field_type.value,
                    input_type=field_def.input_type.value,
                    value=_jsonable(value),
                    error=state.errors.get(key),
                    options=list(field_def.options) if field_def.kind.has_options else [],
                    placeholder=field_def.placeholder,
                    mandatory=field_def.mandatory,
                    read_only=field_def.read_only,
                    future_date_allowed=field_def.future_date_allowed,
                ))
            if sub_plan.fields:
                section_plan.sub_sections.append(sub_plan)

        plan.append(section_plan)

    return plan


def render_plan_to_dict(plan: List[SectionPlan]) -> List[Dict[str, Any]]:
    """Convert a render plan to a JSON-serialisable structure."""
    return [
        {
            'name': section.name,
            'expanded': section.expanded,
            'sub_sections': [
                {
                    'name': sub.name,
                    'expansion_key': sub.expansion_key,
                    'expanded': sub.expanded,
                    'fields': [
                        {
                            'key': f.key,
                            'name': f.name,
                            'field_type': f.field_type,
                            'input_type': f.input_type,
                            'value': f.value,
                            'error': f.error,
                            'options': f.options,
                            'placeholder': f.placeholder,
                            'mandatory': f.mandatory,
                            'read_only': f.read_only,
                            'future_date_allowed': f.future_date_allowed,
                        }
                        for f in sub.fields
                    ],
                }
                for sub in section.sub_sections
            ],
        }
        for section in plan
    ]

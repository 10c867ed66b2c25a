"""
Dependency Resolver

Updates section visibility after a field edit, driven by the schema's
declarative dependency rules.

Resolution Rules:
=================
1. The changed field key is resolved to (section name, reference id)
2. Every rule declared for that pair is evaluated, in declaration order,
   against the single new value
3. Match: the rule's dependent section becomes visible
4. No match: the dependent section is hidden and every field under it
   is reset to ''

Rules are evaluated from scratch on every change. Because rules run in
order, a later matching rule re-shows a section an earlier rule hid.
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, FrozenSet, Iterable, List, Tuple

from formengine.field_types import coerce_to_text
from formengine.keys import key_suffix, parse_key
from formengine.schema import DependencyRule, FormSchema
from formengine.walker import find_field, walk_fields

logger = logging.getLogger(__name__)


class RuleIndex:
    """Dependency rules grouped by triggering (section, field), order preserved."""

    def __init__(self, rules: Iterable[DependencyRule]):
        self._rules: Dict[Tuple[str, str], List[DependencyRule]] = OrderedDict()
        for rule in rules:
            self._rules.setdefault((rule.section_name, rule.field_name), []).append(rule)

    def rules_for(self, section_name: str, field_name: str) -> List[DependencyRule]:
        return list(self._rules.get((section_name, field_name), []))

    def __len__(self):
        return sum(len(rules) for rules in self._rules.values())


def rule_matches(rule: DependencyRule, value: Any) -> bool:
    """Compare a stored value with a rule's trigger value."""
    return coerce_to_text(value) == rule.trigger_value


def on_field_changed(field_key: str,
                     new_value: Any,
                     rules: Iterable[DependencyRule],
                     schema: FormSchema,
                     visible_sections: FrozenSet[str],
                     values: Dict[str, Any]) -> Tuple[FrozenSet[str], Dict[str, Any]]:
    """
    Re-evaluate the rules triggered by a field change.

    Args:
        field_key: Key of the changed field
        new_value: Its new value
        rules: Dependency rules in declaration order
        schema: The loaded schema
        visible_sections: Current visible section names
        values: Current value store

    Returns:
        Tuple of (visible sections, value store), both new objects
    """
    position = find_field(schema, field_key)
    if position is None:
        section_name, field_name = parse_key(field_key)
    else:
        section_name, field_name = position.section.name, key_suffix(position.field)
    index = rules if isinstance(rules, RuleIndex) else RuleIndex(rules)

    visible = set(visible_sections)
    updated = dict(values)

    for rule in index.rules_for(section_name, field_name):
        if rule_matches(rule, new_value):
            logger.debug('Rule %s=%r shows section %r', field_name, rule.trigger_value,
                         rule.dependent_section)
            visible.add(rule.dependent_section)
        else:
            logger.debug('Rule %s=%r hides section %r', field_name, rule.trigger_value,
                         rule.dependent_section)
            visible.discard(rule.dependent_section)
            for position in walk_fields(schema, section_name=rule.dependent_section):
                updated[position.key] = ''

    return frozenset(visible), updated

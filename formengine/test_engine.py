"""
Tests for state initialisation, dependency resolution and engine transactions.
"""

import unittest
from datetime import datetime, timezone

from formengine.dependencies import RuleIndex, on_field_changed
from formengine.engine import (
    begin_submission, change_field, finish_submission, load_form, run_validation,
    submission_values, toggle_section
)
from formengine.exceptions import (
    FormNotLoadedError, ReadOnlyFieldError, UnknownFieldError
)
from formengine.render_plan import build_render_plan, render_plan_to_dict
from formengine.schema import DependencyRule, parse_schema
from formengine.state import FormState, initialize


NOW = datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)

TRIGGER_KEY = 'Household__Occupancy__Has Pets__Has_Pets__c'
PET_NAME_KEY = 'Pets__Details__Pet Name__Pet_Name__c'
PET_COUNT_KEY = 'Pets__Details__Pet Count__Pet_Count__c'


def build_document():
    """Two sections; Pets depends on Household's Has Pets answer."""
    return {
        'formType': 'Household Survey',
        'sections': [
            {
                'name': 'Household',
                'order': 1,
                'isPrePopulateData': True,
                'subSections': [{
                    'name': 'Occupancy',
                    'order': 1,
                    'isPrePopulateData': True,
                    'fields': [
                        {'name': 'Has Pets', 'sfField': 'Has_Pets__c', 'fieldType': 'RADIO',
                         'inputType': 'TEXT', 'dropDownValues': 'Yes,No', 'mandatory': True,
                         'order': 1},
                        {'name': 'Surveyor', 'sfField': 'Surveyor__c', 'fieldType': 'INPUT',
                         'inputType': 'TEXT', 'isReadOnly': True, 'value': 'J. Smith',
                         'order': 2},
                        {'name': 'Notes', 'sfField': 'Notes__c', 'fieldType': 'MULTILINE_INPUT',
                         'inputType': 'TEXT', 'isHidden': True, 'order': 3},
                    ],
                }],
            },
            {
                'name': 'Pets',
                'order': 2,
                'subSections': [{
                    'name': 'Details',
                    'order': 1,
                    'fields': [
                        {'name': 'Pet Name', 'sfField': 'Pet_Name__c', 'fieldType': 'INPUT',
                         'inputType': 'TEXT', 'mandatory': True, 'order': 1},
                        {'name': 'Pet Count', 'sfField': 'Pet_Count__c', 'fieldType': 'INPUT',
                         'inputType': 'NUMBER', 'value': '1', 'order': 2},
                    ],
                }],
            },
        ],
        'dependentSectionsDetails': [
            {'sectionName': 'Household', 'fieldName': 'Has_Pets__c', 'value': 'Yes',
             'dependentSectionValue': 'Pets'},
        ],
    }


class TestInitialize(unittest.TestCase):

    def setUp(self):
        self.schema = parse_schema(build_document())

    def test_all_sections_start_visible(self):
        state = initialize(self.schema)
        self.assertEqual(state.visible_sections, frozenset({'Household', 'Pets'}))

    def test_pre_populated_sections_start_expanded(self):
        state = initialize(self.schema)
        self.assertEqual(state.expanded_sections, frozenset({'Household', 'Household-Occupancy'}))

    def test_defaults_populate_values(self):
        state = initialize(self.schema)
        self.assertEqual(state.values['Household__Occupancy__Surveyor__Surveyor__c'], 'J. Smith')
        self.assertEqual(state.values[PET_COUNT_KEY], '1')
        self.assertEqual(state.values[PET_NAME_KEY], '')
        self.assertEqual(len(state.values), 5)

    def test_initialize_is_idempotent(self):
        self.assertEqual(initialize(self.schema), initialize(self.schema))
        self.assertEqual(initialize(self.schema).to_dict(), initialize(self.schema).to_dict())

    def test_no_schema_gives_pre_init_state(self):
        state = initialize(None)
        self.assertFalse(state.initialized)
        self.assertEqual(state.values, {})

    def test_state_round_trips_through_dict(self):
        state = initialize(self.schema)
        self.assertEqual(FormState.from_dict(state.to_dict()), state)


class TestDependencyResolver(unittest.TestCase):

    def setUp(self):
        self.schema = parse_schema(build_document())
        self.state = initialize(self.schema)

    def test_non_matching_value_hides_and_clears(self):
        values = dict(self.state.values, **{PET_NAME_KEY: 'Rex'})
        visible, values = on_field_changed(
            TRIGGER_KEY, 'No', self.schema.dependency_rules, self.schema,
            self.state.visible_sections, values
        )
        self.assertNotIn('Pets', visible)
        self.assertEqual(values[PET_NAME_KEY], '')
        self.assertEqual(values[PET_COUNT_KEY], '')

    def test_matching_value_shows(self):
        visible, _ = on_field_changed(
            TRIGGER_KEY, 'Yes', self.schema.dependency_rules, self.schema,
            frozenset({'Household'}), self.state.values
        )
        self.assertIn('Pets', visible)

    def test_unrelated_field_changes_nothing(self):
        visible, values = on_field_changed(
            'Pets__Details__Pet Name__Pet_Name__c', 'Rex', self.schema.dependency_rules,
            self.schema, self.state.visible_sections, self.state.values
        )
        self.assertEqual(visible, self.state.visible_sections)
        self.assertEqual(values, self.state.values)

    def test_inputs_are_not_mutated(self):
        values = dict(self.state.values)
        on_field_changed(TRIGGER_KEY, 'No', self.schema.dependency_rules, self.schema,
                         self.state.visible_sections, values)
        self.assertEqual(values, self.state.values)

    def test_later_rule_can_reshow_section(self):
        rules = [
            DependencyRule('Household', 'Has_Pets__c', 'Yes', 'Pets'),
            DependencyRule('Household', 'Has_Pets__c', 'No', 'Pets'),
        ]
        visible, values = on_field_changed(
            TRIGGER_KEY, 'No', rules, self.schema, self.state.visible_sections, self.state.values
        )
        self.assertIn('Pets', visible)
        self.assertEqual(values[PET_COUNT_KEY], '')

    def test_delimited_reference_id_triggers_rule(self):
        schema = parse_schema({
            'formType': 'Minimal',
            'sections': [
                {'name': 'A', 'subSections': [{'name': 'S', 'fields': [
                    {'name': 'Q', 'sfField': 'Q__c', 'fieldType': 'DROPDOWN',
                     'dropDownValues': 'Yes|No'},
                ]}]},
                {'name': 'B', 'subSections': [{'name': 'T', 'fields': [
                    {'name': 'Detail', 'sfField': 'Detail__c', 'value': 'kept'},
                ]}]},
            ],
            'dependentSectionsDetails': [
                {'sectionName': 'A', 'fieldName': 'Q__c', 'value': 'Yes',
                 'dependentSectionValue': 'B'},
            ],
        })
        state = change_field(schema, load_form(schema), 'A__S__Q__Q__c', 'No')
        self.assertEqual(state.visible_sections, frozenset({'A'}))
        self.assertEqual(state.values['B__T__Detail__Detail__c'], '')

        state = change_field(schema, state, 'A__S__Q__Q__c', 'Yes')
        self.assertIn('B', state.visible_sections)

    def test_field_name_with_delimiter_still_resolves(self):
        document = build_document()
        document['sections'][0]['subSections'][0]['fields'][0]['name'] = 'Has__Pets'
        schema = parse_schema(document)
        key = 'Household__Occupancy__Has__Pets__Has_Pets__c'
        visible, _ = on_field_changed(key, 'No', schema.dependency_rules, schema,
                                      frozenset({'Household', 'Pets'}), {})
        self.assertEqual(visible, frozenset({'Household'}))

    def test_rule_index_preserves_declaration_order(self):
        rules = [
            DependencyRule('A', 'f', '1', 'X'),
            DependencyRule('B', 'g', '1', 'Y'),
            DependencyRule('A', 'f', '2', 'Z'),
        ]
        index = RuleIndex(rules)
        self.assertEqual([r.dependent_section for r in index.rules_for('A', 'f')], ['X', 'Z'])
        self.assertEqual(len(index), 3)


class TestTransactions(unittest.TestCase):

    def setUp(self):
        self.schema = parse_schema(build_document())
        self.state = load_form(self.schema)

    def test_dependency_round_trip(self):
        state = change_field(self.schema, self.state, TRIGGER_KEY, 'Yes')
        state = change_field(self.schema, state, PET_NAME_KEY, 'Rex')
        self.assertIn('Pets', state.visible_sections)

        state, result = run_validation(self.schema, state, now=NOW)
        self.assertTrue(result.is_valid)

        state = change_field(self.schema, state, TRIGGER_KEY, 'No')
        self.assertNotIn('Pets', state.visible_sections)
        self.assertEqual(state.values[PET_NAME_KEY], '')
        self.assertEqual(state.values[PET_COUNT_KEY], '')

        state, result = run_validation(self.schema, state, now=NOW)
        self.assertTrue(result.is_valid)

    def test_visible_dependent_section_is_validated(self):
        state = change_field(self.schema, self.state, TRIGGER_KEY, 'Yes')
        state, result = run_validation(self.schema, state, now=NOW)
        self.assertEqual(result.messages, {PET_NAME_KEY: 'Pet Name is required'})
        self.assertEqual(state.errors, {PET_NAME_KEY: 'Pet Name is required'})

    def test_editing_clears_that_fields_error(self):
        state, _ = run_validation(self.schema, self.state, now=NOW)
        self.assertIn(TRIGGER_KEY, state.errors)
        state = change_field(self.schema, state, PET_NAME_KEY, 'Rex')
        self.assertIn(TRIGGER_KEY, state.errors)
        self.assertNotIn(PET_NAME_KEY, state.errors)

    def test_change_does_not_mutate_prior_state(self):
        before = self.state.to_dict()
        change_field(self.schema, self.state, TRIGGER_KEY, 'No')
        self.assertEqual(self.state.to_dict(), before)

    def test_unknown_key_is_rejected(self):
        with self.assertRaises(UnknownFieldError):
            change_field(self.schema, self.state, 'Nope__Nope__Nope__x', 'value')

    def test_read_only_field_is_rejected(self):
        with self.assertRaises(ReadOnlyFieldError):
            change_field(self.schema, self.state, 'Household__Occupancy__Surveyor__Surveyor__c', 'x')

    def test_operations_require_loaded_form(self):
        with self.assertRaises(FormNotLoadedError):
            change_field(None, FormState.pre_init(), TRIGGER_KEY, 'Yes')
        with self.assertRaises(FormNotLoadedError):
            toggle_section(FormState.pre_init(), 'Household')

    def test_toggle_section(self):
        state = toggle_section(self.state, 'Pets')
        self.assertIn('Pets', state.expanded_sections)
        state = toggle_section(state, 'Pets')
        self.assertNotIn('Pets', state.expanded_sections)

    def test_checkbox_true_matches_string_trigger(self):
        document = build_document()
        document['sections'][0]['subSections'][0]['fields'][0].update(
            {'fieldType': 'CHECKBOX', 'dropDownValues': ''}
        )
        document['dependentSectionsDetails'][0]['value'] = 'true'
        schema = parse_schema(document)
        state = change_field(schema, load_form(schema), TRIGGER_KEY, True)
        self.assertEqual(state.values[TRIGGER_KEY], 'true')
        self.assertIn('Pets', state.visible_sections)


class TestSubmission(unittest.TestCase):

    def setUp(self):
        self.schema = parse_schema(build_document())
        self.state = load_form(self.schema)

    def test_invalid_submission_reports_first_error(self):
        state = change_field(self.schema, self.state, TRIGGER_KEY, 'Yes')
        outcome = begin_submission(self.schema, state, now=NOW)
        self.assertFalse(outcome.accepted)
        self.assertEqual(outcome.first_error_key, PET_NAME_KEY)
        self.assertFalse(outcome.state.submitting)

    def test_valid_submission_sets_busy_flag(self):
        state = change_field(self.schema, self.state, TRIGGER_KEY, 'No')
        outcome = begin_submission(self.schema, state, now=NOW)
        self.assertTrue(outcome.accepted)
        self.assertTrue(outcome.state.submitting)
        self.assertNotIn(PET_NAME_KEY, outcome.values)
        self.assertEqual(outcome.values[TRIGGER_KEY], 'No')

        self.assertFalse(finish_submission(outcome.state).submitting)

    def test_busy_flag_is_left_to_the_caller(self):
        state = change_field(self.schema, self.state, TRIGGER_KEY, 'No').evolve(submitting=True)
        outcome = begin_submission(self.schema, state, now=NOW)
        self.assertTrue(outcome.accepted)
        self.assertTrue(outcome.state.submitting)

    def test_submission_values_include_hidden_fields_of_visible_sections(self):
        values = submission_values(self.schema, self.state)
        self.assertIn('Household__Occupancy__Notes__Notes__c', values)
        self.assertEqual(list(values)[0], TRIGGER_KEY)


class TestRenderPlan(unittest.TestCase):

    def setUp(self):
        self.schema = parse_schema(build_document())
        self.state = load_form(self.schema)

    def test_plan_lists_visible_sections_and_non_hidden_fields(self):
        state = change_field(self.schema, self.state, TRIGGER_KEY, 'No')
        plan = build_render_plan(self.schema, state)
        self.assertEqual([s.name for s in plan], ['Household'])
        names = [f.name for f in plan[0].sub_sections[0].fields]
        self.assertEqual(names, ['Has Pets', 'Surveyor'])

    def test_plan_carries_errors_and_options(self):
        state, _ = run_validation(self.schema, self.state, now=NOW)
        plan = render_plan_to_dict(build_render_plan(self.schema, state))
        field = plan[0]['sub_sections'][0]['fields'][0]
        self.assertEqual(field['key'], TRIGGER_KEY)
        self.assertEqual(field['error'], 'Has Pets is required')
        self.assertEqual(field['options'], ['Yes', 'No'])
        self.assertTrue(plan[0]['expanded'])
        self.assertTrue(plan[0]['sub_sections'][0]['expanded'])

    def test_options_only_for_choice_fields(self):
        document = build_document()
        document['sections'][1]['subSections'][0]['fields'][0]['dropDownValues'] = 'Rex|Fido'
        schema = parse_schema(document)
        plan = build_render_plan(schema, load_form(schema))
        pet_name = plan[1].sub_sections[0].fields[0]
        self.assertEqual(pet_name.key, PET_NAME_KEY)
        self.assertEqual(pet_name.options, [])

    def test_no_schema_gives_empty_plan(self):
        self.assertEqual(build_render_plan(None, FormState.pre_init()), [])


if __name__ == '__main__':
    unittest.main()

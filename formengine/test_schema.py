"""
Unit tests for schema parsing, field keys and the tree walker.
"""

import pytest
from formengine.exceptions import SchemaError
from formengine.field_types import FieldType, InputType, coerce_to_list, coerce_to_text, parse_options
from formengine.keys import derive_key, expansion_key, parse_key
from formengine.schema import Field, parse_schema
from formengine.walker import find_field, walk_fields


def _document(sections, rules=None):
    return {
        'statusMessage': 'Form loaded',
        'statusCode': '200',
        'status': 'SUCCESS',
        'data': {
            'templateWrap': {
                'formType': 'Site Survey',
                'sections': sections,
                'dependentSectionsDetails': rules or [],
            }
        }
    }


def _section(name, sub_sections, **extra):
    data = {'name': name, 'order': 1, 'subSections': sub_sections}
    data.update(extra)
    return data


def _sub(name, fields, **extra):
    data = {'name': name, 'order': 1, 'fields': fields}
    data.update(extra)
    return data


class TestParseSchema:
    def test_envelope_is_unwrapped(self):
        schema = parse_schema(_document([_section('A', [_sub('S', [{'name': 'F', 'sfField': 'f'}])])]))
        assert schema.form_type == 'Site Survey'
        assert schema.status_message == 'Form loaded'
        assert schema.section_names() == ['A']

    def test_bare_template_is_accepted(self):
        schema = parse_schema({'formType': 'Bare', 'sections': []})
        assert schema.form_type == 'Bare'
        assert schema.sections == ()

    def test_none_document(self):
        assert parse_schema(None) is None

    def test_missing_sections_is_an_error(self):
        with pytest.raises(SchemaError):
            parse_schema({'formType': 'Broken'})

    def test_non_object_document_is_an_error(self):
        with pytest.raises(SchemaError):
            parse_schema(['not', 'a', 'schema'])

    def test_unknown_field_type_is_an_error(self):
        with pytest.raises(SchemaError):
            parse_schema(_document([_section('A', [_sub('S', [{'name': 'F', 'fieldType': 'SLIDER'}])])]))

    def test_duplicate_keys_are_an_error(self):
        fields = [{'name': 'F', 'sfField': 'f'}, {'name': 'F', 'sfField': 'f'}]
        with pytest.raises(SchemaError):
            parse_schema(_document([_section('A', [_sub('S', fields)])]))

    def test_field_attributes(self):
        schema = parse_schema(_document([_section('A', [_sub('S', [{
            'name': 'Visit',
            'sfField': 'Visit__c',
            'fieldType': 'date_picker',
            'inputType': 'date',
            'mandatory': True,
            'isReadOnly': False,
            'isHidden': False,
            'isFutureDate': False,
            'valueLength': '10',
            'valueMinLength': '',
            'value': '2024-01-01',
            'order': None,
        }])])]))
        field = schema.sections[0].sub_sections[0].fields[0]
        assert field.field_type == FieldType.DATE_PICKER
        assert field.input_type == InputType.DATE
        assert field.mandatory is True
        assert field.future_date_allowed is False
        assert field.max_length == 10
        assert field.min_length is None
        assert field.default_value == '2024-01-01'
        assert field.order is None

    def test_unknown_input_type_is_other(self):
        schema = parse_schema(_document([_section('A', [_sub('S', [{'name': 'F', 'inputType': 'EMAIL'}])])]))
        assert schema.sections[0].sub_sections[0].fields[0].input_type == InputType.OTHER

    def test_dependency_rules(self):
        rules = [{'sectionName': 'A', 'fieldName': 'f', 'value': 'Yes', 'dependentSectionValue': 'B'}]
        schema = parse_schema(_document([_section('A', []), _section('B', [])], rules))
        rule = schema.dependency_rules[0]
        assert (rule.section_name, rule.field_name, rule.trigger_value, rule.dependent_section) == \
            ('A', 'f', 'Yes', 'B')

    def test_subsection_capture_bounds(self):
        schema = parse_schema(_document([_section('A', [_sub('S', [], minImageCapture=2, maxImageCapture=4)])]))
        sub = schema.sections[0].sub_sections[0]
        assert (sub.min_attachments, sub.max_attachments) == (2, 4)


class TestFieldTypes:
    def test_options_pipe_delimited(self):
        assert parse_options('Yes|No| Maybe ') == ('Yes', 'No', 'Maybe')

    def test_options_comma_delimited(self):
        assert parse_options('Red, Green,,Blue') == ('Red', 'Green', 'Blue')

    def test_options_empty(self):
        assert parse_options('') == ()
        assert parse_options(None) == ()

    def test_coerce_to_text(self):
        assert coerce_to_text(None) == ''
        assert coerce_to_text(False) == ''
        assert coerce_to_text(True) == 'true'
        assert coerce_to_text(12) == '12'
        assert coerce_to_text(['a', '', 'b']) == 'a, b'

    def test_coerce_to_list(self):
        assert coerce_to_list('') == []
        assert coerce_to_list(None) == []
        assert coerce_to_list('x.png') == ['x.png']
        assert coerce_to_list(('a', 'b')) == ['a', 'b']


class TestFieldKeys:
    def test_key_uses_reference_id(self):
        field = Field(name='Name', reference_id='Name__c', order=3)
        assert derive_key('Owner', 'Basics', field) == 'Owner__Basics__Name__Name__c'

    def test_key_falls_back_to_order(self):
        field = Field(name='Name', order=3)
        assert derive_key('Owner', 'Basics', field) == 'Owner__Basics__Name__3'

    def test_key_is_stable(self):
        field = Field(name='Name', reference_id='ref')
        assert derive_key('A', 'B', field) == derive_key('A', 'B', field)

    def test_parse_key(self):
        assert parse_key('Owner__Basics__Name__ref') == ('Owner', 'ref')

    def test_parse_key_keeps_delimited_reference_id(self):
        assert parse_key('A__S__Q__Q__c') == ('A', 'Q__c')
        assert parse_key('Household__Occupancy__Has Pets__Has_Pets__c') == \
            ('Household', 'Has_Pets__c')

    def test_parse_key_inverts_derive_key(self):
        field = Field(name='Name', reference_id='Owner_Name__c')
        assert parse_key(derive_key('Owner', 'Basics', field)) == ('Owner', 'Owner_Name__c')

    def test_parse_key_short_key(self):
        assert parse_key('Owner__Basics') == ('Owner', '')

    def test_expansion_key(self):
        assert expansion_key('Owner', 'Basics') == 'Owner-Basics'

    def test_keys_unique_across_schema(self):
        schema = parse_schema(_document([
            _section('A', [_sub('S', [{'name': 'F', 'sfField': 'x'}, {'name': 'F', 'order': 2}]),
                           _sub('T', [{'name': 'F', 'sfField': 'x'}])]),
            _section('B', [_sub('S', [{'name': 'F', 'sfField': 'x'}])]),
        ]))
        keys = [p.key for p in walk_fields(schema)]
        assert len(keys) == len(set(keys)) == 4


class TestWalker:
    def setup_method(self):
        self.schema = parse_schema(_document([
            _section('A', [
                _sub('S1', [
                    {'name': 'Third', 'sfField': 'c', 'order': 3},
                    {'name': 'First', 'sfField': 'a', 'order': 1},
                    {'name': 'TieOne', 'sfField': 't1', 'order': 2},
                    {'name': 'TieTwo', 'sfField': 't2', 'order': 2},
                    {'name': 'Hidden', 'sfField': 'h', 'order': 4, 'isHidden': True},
                ]),
            ]),
            _section('B', [_sub('S2', [{'name': 'Other', 'sfField': 'o'}])]),
        ]))

    def test_fields_sorted_by_order_with_stable_ties(self):
        names = [p.field.name for p in walk_fields(self.schema, section_name='A')]
        assert names == ['First', 'TieOne', 'TieTwo', 'Third', 'Hidden']

    def test_repeated_walks_are_identical(self):
        assert list(walk_fields(self.schema)) == list(walk_fields(self.schema))

    def test_hidden_filter(self):
        names = [p.field.name for p in walk_fields(self.schema, include_hidden=False)]
        assert 'Hidden' not in names

    def test_visibility_filter(self):
        names = [p.field.name for p in walk_fields(self.schema, visible_sections={'B'})]
        assert names == ['Other']

    def test_find_field(self):
        position = find_field(self.schema, 'B__S2__Other__o')
        assert position.section.name == 'B'
        assert find_field(self.schema, 'B__S2__Missing__x') is None

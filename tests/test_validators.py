"""
Form validation tests.

Run with: python -m pytest tests/test_validators.py -v
"""

import pytest

from services.agreements import AgreementForm, AgreementValidationError, Signatory
from services.agreements.validators import (
    collect_form_errors,
    requires_unit,
    validate_for_save,
    validate_signatories,
    validate_unit_selection,
)


class MockProperty:
    def __init__(self, propertytype):
        self.propertytype = propertytype


def complete_form(**terms):
    values = {
        'monthlyRent': '1500',
        'depositAmount': 3000,
        'startDate': '2024-03-01',
        'endDate': '2025-02-28',
        'paymentDueDay': 5,
        'noticePeriod': '30',
    }
    values.update(terms)
    return AgreementForm(templateid='t1', propertyid='p1', renteeid='r1', terms=values)


class TestRequiresUnit:

    def test_only_the_multi_unit_type_needs_a_unit(self):
        assert requires_unit(MockProperty('apartment'))
        assert requires_unit(MockProperty('Apartment'))
        assert not requires_unit(MockProperty('house'))
        assert not requires_unit(None)

    def test_configured_type(self):
        assert requires_unit({'propertytype': 'condo'}, multi_unit_type='condo')
        assert not requires_unit(MockProperty('apartment'), multi_unit_type='condo')


class TestCollectFormErrors:

    def test_complete_form_is_clean(self):
        assert collect_form_errors(complete_form(), MockProperty('house')) == {}

    def test_every_missing_field_is_reported(self):
        errors = collect_form_errors(AgreementForm(), MockProperty('apartment'))
        assert set(errors) == {
            'templateid', 'propertyid', 'renteeid', 'unitid',
            'terms.monthlyRent', 'terms.depositAmount', 'terms.startDate',
            'terms.endDate', 'terms.paymentDueDay', 'terms.noticePeriod',
        }

    def test_blank_strings_count_as_missing(self):
        errors = collect_form_errors(complete_form(monthlyRent='  '))
        assert errors == {'terms.monthlyRent': 'Monthly rent is required'}

    @pytest.mark.parametrize('terms, field', [
        ({'monthlyRent': 'lots'}, 'terms.monthlyRent'),
        ({'monthlyRent': 'nan'}, 'terms.monthlyRent'),
        ({'monthlyRent': 'inf'}, 'terms.monthlyRent'),
        ({'monthlyRent': '1e5'}, 'terms.monthlyRent'),
        ({'monthlyRent': float('nan')}, 'terms.monthlyRent'),
        ({'depositAmount': float('inf')}, 'terms.depositAmount'),
        ({'depositAmount': -5}, 'terms.depositAmount'),
        ({'noticePeriod': 'soon'}, 'terms.noticePeriod'),
        ({'paymentDueDay': 0}, 'terms.paymentDueDay'),
        ({'paymentDueDay': '32'}, 'terms.paymentDueDay'),
        ({'paymentDueDay': 'first'}, 'terms.paymentDueDay'),
        ({'startDate': 'tomorrow'}, 'terms.startDate'),
        ({'endDate': '2024-02-30'}, 'terms.endDate'),
    ])
    def test_invalid_values(self, terms, field):
        errors = collect_form_errors(complete_form(**terms))
        assert list(errors) == [field]

    def test_end_before_start(self):
        errors = collect_form_errors(complete_form(endDate='2024-02-01'))
        assert errors == {'terms.endDate': 'End date cannot be before start date'}

    def test_formatted_amounts_are_accepted(self):
        assert collect_form_errors(complete_form(monthlyRent='1,500.00')) == {}
        assert collect_form_errors(complete_form(monthlyRent='$1,500.00', depositAmount=1500.5)) == {}


class TestValidateForSave:

    def test_raises_with_field_map(self):
        with pytest.raises(AgreementValidationError) as exc_info:
            validate_for_save(complete_form(monthlyRent=None, noticePeriod=None))

        assert str(exc_info.value) == 'Please fix 2 fields before continuing'
        assert set(exc_info.value.field_errors) == {'terms.monthlyRent', 'terms.noticePeriod'}

    def test_unit_selection_only(self):
        validate_unit_selection(AgreementForm(), MockProperty('house'))
        with pytest.raises(AgreementValidationError) as exc_info:
            validate_unit_selection(AgreementForm(), MockProperty('apartment'))
        assert exc_info.value.field_errors == {'unitid': 'Please select a unit for this property'}


class TestValidateSignatories:

    def test_requires_at_least_one(self):
        with pytest.raises(AgreementValidationError):
            validate_signatories([])

    def test_each_needs_name_and_contact(self):
        with pytest.raises(AgreementValidationError) as exc_info:
            validate_signatories([
                Signatory(name='Olivia', contact='owner@example.com'),
                Signatory(name='Ravi', contact=''),
            ])
        assert list(exc_info.value.field_errors) == ['signatories[1]']

    def test_valid_signatories(self):
        validate_signatories([Signatory(name='Olivia', contact='owner@example.com')])

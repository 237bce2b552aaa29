"""
Local checks run before any transition out of draft/review.

Each check collects every problem it finds so the UI can mark all offending
fields at once, then raises AgreementValidationError with the full map.
"""

import re
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .exceptions import AgreementValidationError
from .transforms import parse_amount, parse_date
from .types import AgreementForm, Signatory

NUMBER_PATTERN = re.compile(r'^-?(?:\d+(?:\.\d*)?|\.\d+)$')

REQUIRED_TERMS = {
    'monthlyRent': 'Monthly rent is required',
    'depositAmount': 'Deposit amount is required',
    'startDate': 'Start date is required',
    'endDate': 'End date is required',
    'paymentDueDay': 'Payment due day is required',
    'noticePeriod': 'Notice period is required',
}


def requires_unit(prop: Any, multi_unit_type: str = 'apartment') -> bool:
    """True when agreements for this property must name a unit."""
    if prop is None:
        return False
    property_type = getattr(prop, 'propertytype', None)
    if property_type is None and isinstance(prop, dict):
        property_type = prop.get('propertytype')
    return (property_type or '').lower() == (multi_unit_type or '').lower()


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_number(value) -> bool:
    """
    True for a finite plain or currency-formatted number.

    Exponents, nan and inf are rejected so the value always reads back the
    same through parse_amount.
    """
    if value is None or isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value)).is_finite()

    cleaned = re.sub(r'[\s$,]', '', str(value))
    if not NUMBER_PATTERN.match(cleaned):
        return False
    return Decimal(cleaned).is_finite()


def collect_form_errors(form: AgreementForm, prop: Any = None,
                        multi_unit_type: str = 'apartment') -> Dict[str, str]:
    """Return a field -> message map for every problem on the form."""
    errors: Dict[str, str] = {}

    if not form.templateid:
        errors['templateid'] = 'Please select a template'
    if not form.propertyid:
        errors['propertyid'] = 'Please select a property'
    if not form.renteeid:
        errors['renteeid'] = 'Please select a rentee'

    if requires_unit(prop, multi_unit_type) and not form.unitid:
        errors['unitid'] = 'Please select a unit for this property'

    terms = form.terms or {}
    for key, message in REQUIRED_TERMS.items():
        if _is_blank(terms.get(key)):
            errors[f'terms.{key}'] = message

    for key in ('monthlyRent', 'depositAmount', 'noticePeriod'):
        value = terms.get(key)
        if f'terms.{key}' in errors:
            continue
        if not _is_number(value) or parse_amount(value) < 0:
            errors[f'terms.{key}'] = 'Must be a non-negative number'

    due_day = terms.get('paymentDueDay')
    if 'terms.paymentDueDay' not in errors:
        try:
            day = int(str(due_day).strip())
        except ValueError:
            day = None
        if day is None or not 1 <= day <= 31:
            errors['terms.paymentDueDay'] = 'Payment due day must be between 1 and 31'

    start = end = None
    if 'terms.startDate' not in errors:
        start = parse_date(terms.get('startDate'))
        if start is None:
            errors['terms.startDate'] = 'Start date is not a valid date'
    if 'terms.endDate' not in errors:
        end = parse_date(terms.get('endDate'))
        if end is None:
            errors['terms.endDate'] = 'End date is not a valid date'

    if start and end and end < start:
        errors['terms.endDate'] = 'End date cannot be before start date'

    return errors


def validate_for_save(form: AgreementForm, prop: Any = None,
                      multi_unit_type: str = 'apartment') -> None:
    """Raise AgreementValidationError if the form is not ready to leave draft."""
    errors = collect_form_errors(form, prop, multi_unit_type)
    if errors:
        raise AgreementValidationError(
            f"Please fix {len(errors)} field{'s' if len(errors) != 1 else ''} before continuing",
            field_errors=errors
        )


def validate_unit_selection(form: AgreementForm, prop: Any = None,
                            multi_unit_type: str = 'apartment') -> None:
    """
    The one check a plain draft save enforces.

    A draft may be incomplete, but it may not be stored without a unit when
    its property is the multi-unit type.
    """
    if requires_unit(prop, multi_unit_type) and not form.unitid:
        raise AgreementValidationError(
            'Please select a unit for this property',
            field_errors={'unitid': 'Please select a unit for this property'}
        )


def validate_signatories(signatories: Optional[List[Signatory]]) -> None:
    """Sending requires at least one signatory with a name and a contact."""
    if not signatories:
        raise AgreementValidationError(
            'At least one signatory is required',
            field_errors={'signatories': 'At least one signatory is required'}
        )

    errors = {}
    for i, signatory in enumerate(signatories):
        if not signatory.is_complete:
            errors[f'signatories[{i}]'] = 'Signatory needs a name and an email address'

    if errors:
        raise AgreementValidationError('Every signatory needs a name and an email address',
                                       field_errors=errors)

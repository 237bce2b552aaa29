"""
Merge context assembly and default-term suggestions.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from .types import AgreementForm, MergeContext, Signatory

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_DUE_DAY = '5'
DEFAULT_NOTICE_PERIOD = '30'


def build_merge_context(form: AgreementForm, store, today: Optional[date] = None) -> MergeContext:
    """
    Load the property, unit and rentee selected on a form and bundle them
    with the form's terms.

    Missing selections are left as None; the merge engine leaves their
    tokens unresolved.
    """
    prop = store.get_property(form.propertyid) if form.propertyid else None
    unit = store.get_unit(form.unitid) if form.unitid else None
    rentee = store.get_rentee(form.renteeid) if form.renteeid else None

    if form.propertyid and prop is None:
        logger.warning(f"Property {form.propertyid} not found while building merge context")
    if form.renteeid and rentee is None:
        logger.warning(f"Rentee {form.renteeid} not found while building merge context")

    return MergeContext(
        property=prop,
        unit=unit,
        rentee=rentee,
        terms=dict(form.terms or {}),
        today=today or date.today(),
        agreement_id=form.id
    )


def _first_value(values: Dict[str, Any], *keys):
    for key in keys:
        value = values.get(key)
        if value not in (None, ''):
            return value
    return None


def suggest_terms(prop: Any, unit: Any = None) -> Dict[str, Any]:
    """
    Suggest default terms from the stored rental values of a property and,
    when given, one of its units.

    Unit values take precedence over the property's. Payment-due day and
    notice period come from the property's own terms, defaulting to the 5th
    and 30 days.
    """
    suggestions: Dict[str, Any] = {}
    if prop is None:
        return suggestions

    property_values = getattr(prop, 'rentalvalues', None) or {}
    unit_values = (getattr(unit, 'rentalvalues', None) or {}) if unit is not None else {}

    rent = _first_value(unit_values, 'monthlyRent', 'rent', 'baseRent')
    if rent is None:
        rent = _first_value(property_values, 'monthlyRent', 'rent', 'baseRent')
    if rent is not None:
        suggestions['monthlyRent'] = rent

    deposit = _first_value(unit_values, 'depositAmount', 'deposit')
    if deposit is None:
        deposit = _first_value(property_values, 'depositAmount', 'deposit')
    if deposit is not None:
        suggestions['depositAmount'] = deposit

    property_terms = getattr(prop, 'terms', None) or {}
    suggestions['paymentDueDay'] = str(property_terms.get('paymentDueDay') or DEFAULT_PAYMENT_DUE_DAY)
    suggestions['noticePeriod'] = str(property_terms.get('noticePeriod') or DEFAULT_NOTICE_PERIOD)

    return suggestions


def default_signatories(prop: Any, rentee: Any) -> List[Signatory]:
    """
    The landlord (property owner) and the tenant (rentee), in signing order.

    A party without a name or an email address is left out.
    """
    signatories = []

    owner = getattr(prop, 'owner', None) if prop is not None else None
    if owner is not None and owner.name and owner.email:
        signatories.append(Signatory(name=owner.name, contact=owner.email,
                                     role='landlord', text_marker='For Landlord:'))

    if rentee is not None and rentee.name and rentee.email:
        signatories.append(Signatory(name=rentee.name, contact=rentee.email,
                                     role='tenant', text_marker='For Tenant:'))

    return signatories

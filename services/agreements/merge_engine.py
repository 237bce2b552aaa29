"""
Template Merge Engine

Substitutes placeholder tokens in a stored agreement template with live
data from the property, unit, rentee and agreement terms.

Token syntax (matched case-insensitively):
    {{startDate}}              -> terms.startDate as "March 1, 2024"
    {{terms.monthlyRent}}      -> terms.monthlyRent as "$1,500.00"
    {{property.address}}       -> property.address with <br> line breaks
    {{property.rentalvalues}}  -> property base rent as currency
    {{bank.accountnumber}}     -> property.bank_account_number
    {{unit.unitnumber}}        -> unit.unitnumber
    {{rentee.fullname}}        -> rentee.name
    {{renteeName}}             -> rentee.name (bare alias)

Resolution order for each token:
    1. Date fields of the terms (bare, terms.* or agreement.* prefixed)
    2. Namespaced lookups: property, bank, unit, rentee, terms
       (terms.* skips date fields, which step 1 already owns)
    3. Bare convenience aliases

A token that cannot be resolved is left in the output verbatim and reported
back in MergeResult.unresolved, so template authors can spot typos.
"""

import logging
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

from .types import MergeContext, MergeResult
from .transforms import (
    apply_transform,
    transform_address,
    transform_currency,
    transform_date,
)

logger = logging.getLogger(__name__)


class TemplateMerger:
    """
    Merges a template with a MergeContext.

    Stateless: all methods are classmethods and a merge depends only on its
    arguments, so re-running it on every form change is safe.
    """

    TOKEN_PATTERN = re.compile(
        r'\{\{\s*([A-Za-z_][A-Za-z0-9_]*)(?:\.([A-Za-z_][A-Za-z0-9_]*))?\s*\}\}'
    )

    # Bare date tokens and the terms key they read
    DATE_ALIASES = {
        'startdate': 'startDate',
        'enddate': 'endDate',
    }

    # Namespaces whose date fields are owned by the date resolver
    DATE_NAMESPACES = ('terms', 'agreement')

    BANK_FIELDS = {
        'name': 'bank_name',
        'branch': 'bank_branch',
        'accountnumber': 'bank_account_number',
    }

    RENTEE_FIELDS = {
        'fullname': 'name',
        'nationalid': 'national_id',
        'address': 'permanent_address',
    }

    # Bare aliases: lowercased token -> (entity, field, transform)
    ALIASES = {
        'propertyname': ('property', 'name', None),
        'propertyaddress': ('property', 'address', 'address'),
        'propertytype': ('property', 'propertytype', None),
        'propertybankname': ('property', 'bank_name', None),
        'propertybankbranch': ('property', 'bank_branch', None),
        'propertybankaccount': ('property', 'bank_account_number', None),
        'unitnumber': ('unit', 'unitnumber', None),
        'renteename': ('rentee', 'name', None),
        'renteenationalid': ('rentee', 'national_id', None),
        'renteepermanentaddress': ('rentee', 'permanent_address', None),
        'renteeemail': ('rentee', 'email', None),
        'renteephone': ('rentee', 'phone', 'phone'),
        'monthlyrent': ('terms', 'monthlyRent', 'currency'),
        'depositamount': ('terms', 'depositAmount', 'currency'),
        'paymentdueday': ('terms', 'paymentDueDay', None),
        'noticeperiod': ('terms', 'noticePeriod', None),
        'additionalterms': ('terms', 'additionalTerms', None),
    }

    @classmethod
    def merge(cls, template_content: str, context: MergeContext) -> MergeResult:
        """
        Merge a template with the given context.

        Args:
            template_content: Template HTML/text with {{tokens}}
            context: Property, unit, rentee and terms for this agreement

        Returns:
            MergeResult with the merged content and unresolved tokens
        """
        if not template_content:
            return MergeResult(content='')

        unresolved: List[str] = []

        def replace(match):
            namespace, name = match.group(1), match.group(2)
            if name is None:
                namespace, name = None, namespace

            value = cls.resolve_token(namespace, name, context)
            if value is None:
                token = match.group(0)
                if token not in unresolved:
                    unresolved.append(token)
                return token
            return value

        merged = cls.TOKEN_PATTERN.sub(replace, template_content)

        if unresolved:
            logger.warning(f"Unresolved placeholders in template: {unresolved}")

        return MergeResult(content=merged, unresolved=unresolved)

    @classmethod
    def find_tokens(cls, template_content: str) -> List[str]:
        """List the distinct tokens in a template, in order of appearance."""
        tokens = []
        for match in cls.TOKEN_PATTERN.finditer(template_content or ''):
            if match.group(0) not in tokens:
                tokens.append(match.group(0))
        return tokens

    @classmethod
    def resolve_token(cls, namespace: Optional[str], name: str, context: MergeContext) -> Optional[str]:
        """
        Resolve one token to its replacement text.

        Returns None when the token cannot be resolved.
        """
        key = name.lower()

        if namespace is None:
            if key in cls.DATE_ALIASES:
                return cls._resolve_terms_date(cls.DATE_ALIASES[key], context)
            return cls._resolve_alias(key, context)

        ns = namespace.lower()

        if ns in cls.DATE_NAMESPACES and 'date' in key:
            return cls._resolve_terms_date(key, context)

        if ns == 'property':
            return cls._resolve_property(key, context.property)
        if ns == 'bank':
            return cls._resolve_bank(key, context.property)
        if ns == 'unit':
            return cls._resolve_plain(context.unit, key)
        if ns == 'rentee':
            return cls._resolve_rentee(key, context.rentee)
        if ns == 'terms':
            return cls._resolve_terms(key, context.terms)
        if ns == 'agreement' and key == 'id':
            return context.agreement_id or None

        return None

    # -------------------------------------------------------------------------
    # Resolvers
    # -------------------------------------------------------------------------

    @classmethod
    def _resolve_terms_date(cls, key: str, context: MergeContext) -> Optional[str]:
        found, value = cls._lookup(context.terms, key)
        if not found or value in (None, ''):
            return None
        return transform_date(value)

    @classmethod
    def _resolve_property(cls, key: str, prop: Any) -> Optional[str]:
        if prop is None:
            return None

        if key == 'address':
            value = cls._get_value(prop, 'address')
            return transform_address(value) if value else None

        if key == 'rentalvalues':
            rental_values = cls._get_value(prop, 'rentalvalues') or {}
            return transform_currency(cls._base_rent(rental_values))

        return cls._resolve_plain(prop, key)

    @classmethod
    def _resolve_bank(cls, key: str, prop: Any) -> Optional[str]:
        if prop is None or key not in cls.BANK_FIELDS:
            return None
        return cls._resolve_plain(prop, cls.BANK_FIELDS[key])

    @classmethod
    def _resolve_rentee(cls, key: str, rentee: Any) -> Optional[str]:
        if rentee is None:
            return None

        if key == 'contact':
            contact_details = cls._get_value(rentee, 'contact_details') or {}
            phone = contact_details.get('phone') if isinstance(contact_details, dict) else None
            return str(phone) if phone else None

        return cls._resolve_plain(rentee, cls.RENTEE_FIELDS.get(key, key))

    @classmethod
    def _resolve_terms(cls, key: str, terms: Dict[str, Any]) -> Optional[str]:
        from .types import TERMS_FIELDS

        found, value = cls._lookup(terms, key)
        known = found or key in (f.lower() for f in TERMS_FIELDS)
        if not known:
            return None

        if 'amount' in key or 'rent' in key:
            return transform_currency(value)

        if value in (None, ''):
            return None
        return str(value)

    @classmethod
    def _resolve_alias(cls, key: str, context: MergeContext) -> Optional[str]:
        if key == 'currentdate':
            return transform_date(context.today)
        if key == 'expirydate':
            return transform_date(context.today + timedelta(days=7))
        if key == 'agreementid':
            return context.agreement_id or None

        if key not in cls.ALIASES:
            return None

        entity_name, field_name, transform = cls.ALIASES[key]
        entity = getattr(context, entity_name)
        if entity is None:
            return None

        if entity_name == 'terms':
            _, value = cls._lookup(entity, field_name)
        else:
            value = cls._get_value(entity, field_name)

        if transform == 'currency':
            return transform_currency(value)
        if value in (None, ''):
            return ''
        return apply_transform(value, transform)

    @classmethod
    def _resolve_plain(cls, obj: Any, key: str) -> Optional[str]:
        """Direct field lookup; an empty value leaves the token unresolved."""
        if obj is None:
            return None
        value = cls._get_value(obj, key)
        if value in (None, '') or isinstance(value, (dict, list)):
            return None
        return str(value)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _base_rent(rental_values: Dict[str, Any]) -> Any:
        if not isinstance(rental_values, dict):
            return None
        for key in ('baseRent', 'monthlyRent', 'rent'):
            if rental_values.get(key) not in (None, ''):
                return rental_values[key]
        return None

    @staticmethod
    def _lookup(mapping: Dict[str, Any], key: str):
        """
        Case-insensitive dict lookup.

        Returns (found, value).
        """
        if not mapping:
            return False, None
        if key in mapping:
            return True, mapping[key]
        lowered = key.lower()
        for k, v in mapping.items():
            if k.lower() == lowered:
                return True, v
        return False, None

    @classmethod
    def _get_value(cls, obj: Any, key: str) -> Any:
        """Get a value by dict key or attribute, ignoring case for dicts."""
        if isinstance(obj, dict):
            _, value = cls._lookup(obj, key)
            return value

        if hasattr(obj, key):
            value = getattr(obj, key)
            if callable(value):
                return None
            return value

        return None


def merge(template_content: str, context: MergeContext) -> MergeResult:
    """Module-level shortcut for TemplateMerger.merge."""
    return TemplateMerger.merge(template_content, context)

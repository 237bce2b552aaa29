"""
Agreement Record Store

Reads and writes agreement rows and the entities they reference. Every
database error is rolled back and re-raised as PersistenceError.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from models import (
    db,
    Agreement,
    AgreementTemplate,
    AppUser,
    Property,
    PropertyUnit,
    WebhookEvent,
    generate_uuid,
)
from .exceptions import PersistenceError
from .transforms import parse_date
from .types import AgreementForm, CONTENT_FIELDS
from .validators import requires_unit

logger = logging.getLogger(__name__)


class AgreementStore:
    """SQLAlchemy-backed store for agreements."""

    def __init__(self, session=None, multi_unit_type: str = 'apartment'):
        self._session = session
        self.multi_unit_type = multi_unit_type

    @property
    def session(self):
        return self._session or db.session

    # -------------------------------------------------------------------------
    # Agreements
    # -------------------------------------------------------------------------

    def get(self, agreement_id: str) -> Optional[Agreement]:
        if not agreement_id:
            return None
        try:
            return self.session.get(Agreement, agreement_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load agreement {agreement_id}: {e}") from e

    def get_by_reference(self, reference: str) -> Optional[Agreement]:
        """Find the agreement holding a signature provider reference."""
        if not reference:
            return None
        try:
            return self.session.query(Agreement).filter_by(eviasignreference=reference).first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to look up reference {reference}: {e}") from e

    def save(self, form: AgreementForm, status: str) -> Agreement:
        """
        Insert or update an agreement from form state.

        startdate/enddate are always derived from the terms, and unitid is
        dropped for properties that do not take units. When a content field
        changes on an existing row the document is marked stale.
        """
        try:
            agreement = self.session.get(Agreement, form.id) if form.id else None
            is_new = agreement is None
            if is_new:
                agreement = Agreement(id=form.id or generate_uuid())
                self.session.add(agreement)

            prop = self.session.get(Property, form.propertyid) if form.propertyid else None
            unitid = form.unitid if requires_unit(prop, self.multi_unit_type) else None

            incoming = {
                'templateid': form.templateid,
                'propertyid': form.propertyid,
                'unitid': unitid,
                'renteeid': form.renteeid,
                'terms': dict(form.terms or {}),
            }
            content_changed = is_new or any(
                getattr(agreement, name) != incoming[name] for name in CONTENT_FIELDS
            )

            for name, value in incoming.items():
                setattr(agreement, name, value)
            agreement.notes = form.notes
            agreement.status = status
            agreement.startdate = parse_date(incoming['terms'].get('startDate'))
            agreement.enddate = parse_date(incoming['terms'].get('endDate'))

            if content_changed:
                agreement.needs_document_generation = True

            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to save agreement {form.id or '(new)'}: {e}")
            raise PersistenceError(f"Failed to save agreement: {e}") from e

        form.id = agreement.id
        form.status = agreement.status
        form.unitid = agreement.unitid
        return agreement

    def update_fields(self, agreement_id: str, **fields) -> Agreement:
        """Set columns on an existing agreement and commit."""
        try:
            agreement = self.session.get(Agreement, agreement_id)
            if agreement is None:
                raise PersistenceError(f"Agreement {agreement_id} not found")
            for name, value in fields.items():
                setattr(agreement, name, value)
            agreement.updatedat = datetime.utcnow()
            self.session.commit()
            return agreement
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to update agreement {agreement_id}: {e}")
            raise PersistenceError(f"Failed to update agreement: {e}") from e

    # -------------------------------------------------------------------------
    # Referenced entities
    # -------------------------------------------------------------------------

    def _get(self, model, entity_id):
        if not entity_id:
            return None
        try:
            return self.session.get(model, entity_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load {model.__tablename__} {entity_id}: {e}") from e

    def get_template(self, template_id: str) -> Optional[AgreementTemplate]:
        return self._get(AgreementTemplate, template_id)

    def get_property(self, property_id: str) -> Optional[Property]:
        return self._get(Property, property_id)

    def get_unit(self, unit_id: str) -> Optional[PropertyUnit]:
        return self._get(PropertyUnit, unit_id)

    def get_rentee(self, rentee_id: str) -> Optional[AppUser]:
        return self._get(AppUser, rentee_id)

    # -------------------------------------------------------------------------
    # Webhook events
    # -------------------------------------------------------------------------

    def record_webhook_event(self, request_id: str, event_id: Optional[int], event_type: str = None,
                             event_time: datetime = None, user_name: str = None,
                             user_email: str = None, subject: str = None,
                             raw_data: Dict[str, Any] = None) -> WebhookEvent:
        """Store a raw provider callback before it is processed."""
        try:
            event = WebhookEvent(
                request_id=request_id,
                event_id=event_id,
                event_type=event_type,
                event_time=event_time or datetime.utcnow(),
                user_name=user_name,
                user_email=user_email,
                subject=subject,
                raw_data=raw_data or {}
            )
            self.session.add(event)
            self.session.commit()
            return event
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(f"Failed to store webhook event for {request_id}: {e}") from e

    def mark_webhook_processed(self, event: WebhookEvent) -> None:
        try:
            event.processed = True
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to mark webhook event {event.id} processed: {e}")

    def latest_webhook_event(self, request_id: str) -> Optional[WebhookEvent]:
        if not request_id:
            return None
        try:
            return WebhookEvent.latest_for_request(request_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load webhook events for {request_id}: {e}") from e

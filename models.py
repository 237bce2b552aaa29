# models.py
import uuid
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

from agreement_status import AgreementStatus, SignatureStatus

db = SQLAlchemy()


def _sql_in(values):
    return ', '.join(f"'{v}'" for v in values)


def generate_uuid():
    return str(uuid.uuid4())


class AppUser(db.Model):
    """Staff, owners and rentees. Authentication lives in Supabase Auth."""
    __tablename__ = 'app_users'

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    auth_id = db.Column(db.String(36), unique=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200))
    role = db.Column(db.String(20), nullable=False, default='rentee')  # rentee, staff, admin, owner
    national_id = db.Column(db.String(50))
    permanent_address = db.Column(db.Text)
    contact_details = db.Column(db.JSON)  # {"phone": ..., "email": ...}
    createdat = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def phone(self):
        return (self.contact_details or {}).get('phone')

    def __repr__(self):
        return f'<AppUser {self.name} ({self.role})>'


class Property(db.Model):
    __tablename__ = 'properties'

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    name = db.Column(db.String(200), nullable=False)
    address = db.Column(db.Text)
    propertytype = db.Column(db.String(50))
    rentalvalues = db.Column(db.JSON)  # {"baseRent": ..., "deposit": ...}
    terms = db.Column(db.JSON)  # {"paymentDueDay": ..., "noticePeriod": ...}
    bank_name = db.Column(db.String(120))
    bank_branch = db.Column(db.String(120))
    bank_account_number = db.Column(db.String(60))
    owner_id = db.Column(db.String(36), db.ForeignKey('app_users.id'))
    createdat = db.Column(db.DateTime, default=datetime.utcnow)

    owner = db.relationship('AppUser', foreign_keys=[owner_id])
    units = db.relationship('PropertyUnit', backref='property', lazy='dynamic')

    def __repr__(self):
        return f'<Property {self.name}>'


class PropertyUnit(db.Model):
    __tablename__ = 'property_units'

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    propertyid = db.Column(db.String(36), db.ForeignKey('properties.id'), nullable=False)
    unitnumber = db.Column(db.String(20), nullable=False)
    floor = db.Column(db.String(20))
    bedrooms = db.Column(db.Integer)
    bathrooms = db.Column(db.Integer)
    rentalvalues = db.Column(db.JSON)

    def __repr__(self):
        return f'<PropertyUnit {self.unitnumber}>'


class AgreementTemplate(db.Model):
    __tablename__ = 'agreement_templates'

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    name = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False)  # HTML with {{placeholders}}
    createdat = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<AgreementTemplate {self.name}>'


class Agreement(db.Model):
    """
    A rental agreement moving through the signature workflow.

    startdate/enddate mirror terms.startDate/terms.endDate; the store keeps
    them in sync on every write.
    """
    __tablename__ = 'agreements'
    __table_args__ = (
        db.CheckConstraint(
            f"status IN ({_sql_in(AgreementStatus.values())})",
            name='agreements_status_check'
        ),
        db.CheckConstraint(
            f"signature_status IS NULL OR signature_status IN ({_sql_in(SignatureStatus.values())})",
            name='agreements_signature_status_check'
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    templateid = db.Column(db.String(36), db.ForeignKey('agreement_templates.id'))
    propertyid = db.Column(db.String(36), db.ForeignKey('properties.id'))
    unitid = db.Column(db.String(36), db.ForeignKey('property_units.id'))
    renteeid = db.Column(db.String(36), db.ForeignKey('app_users.id'))
    status = db.Column(db.String(20), nullable=False, default=AgreementStatus.DRAFT.value)
    terms = db.Column(db.JSON, nullable=False, default=dict)
    notes = db.Column(db.Text)
    documenturl = db.Column(db.Text)
    needs_document_generation = db.Column(db.Boolean, nullable=False, default=False)
    startdate = db.Column(db.Date)
    enddate = db.Column(db.Date)

    # Signature tracking
    eviasignreference = db.Column(db.String(100), index=True)
    signature_status = db.Column(db.String(20))
    signature_sent_at = db.Column(db.DateTime)
    signature_updated_at = db.Column(db.DateTime)
    signatories_status = db.Column(db.JSON)
    signeddate = db.Column(db.DateTime)
    signatureurl = db.Column(db.Text)

    createdat = db.Column(db.DateTime, default=datetime.utcnow)
    updatedat = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    template = db.relationship('AgreementTemplate')
    property = db.relationship('Property')
    unit = db.relationship('PropertyUnit')
    rentee = db.relationship('AppUser', foreign_keys=[renteeid])

    def to_dict(self):
        return {
            'id': self.id,
            'templateid': self.templateid,
            'propertyid': self.propertyid,
            'unitid': self.unitid,
            'renteeid': self.renteeid,
            'status': self.status,
            'terms': dict(self.terms or {}),
            'notes': self.notes,
            'documenturl': self.documenturl,
            'needs_document_generation': self.needs_document_generation,
            'startdate': self.startdate.isoformat() if self.startdate else None,
            'enddate': self.enddate.isoformat() if self.enddate else None,
            'eviasignreference': self.eviasignreference,
            'signature_status': self.signature_status,
            'signature_sent_at': self.signature_sent_at.isoformat() if self.signature_sent_at else None,
            'signature_updated_at': self.signature_updated_at.isoformat() if self.signature_updated_at else None,
            'signatories_status': list(self.signatories_status or []),
            'signeddate': self.signeddate.isoformat() if self.signeddate else None,
            'signatureurl': self.signatureurl,
        }

    def __repr__(self):
        return f'<Agreement {self.id} {self.status}>'


class WebhookEvent(db.Model):
    """Raw e-signature callbacks, kept for polling fallback and debugging."""
    __tablename__ = 'webhook_events'

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(100))
    request_id = db.Column(db.String(100), index=True, nullable=False)
    user_name = db.Column(db.String(200))
    user_email = db.Column(db.String(200))
    subject = db.Column(db.String(300))
    event_id = db.Column(db.Integer)
    event_time = db.Column(db.DateTime, default=datetime.utcnow)
    raw_data = db.Column(db.JSON)
    processed = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @classmethod
    def latest_for_request(cls, request_id):
        return cls.query.filter_by(request_id=request_id).order_by(
            cls.event_time.desc(), cls.id.desc()
        ).first()

    def __repr__(self):
        return f'<WebhookEvent {self.request_id} {self.event_id}>'


class AuditEvent(db.Model):
    """Audit trail for the agreement signature workflow."""
    __tablename__ = 'audit_events'

    # Event types
    AGREEMENT_SAVED = 'agreement_saved'
    AGREEMENT_STATUS_CHANGED = 'agreement_status_changed'
    AGREEMENT_CANCELLED = 'agreement_cancelled'
    DOCUMENT_GENERATED = 'document_generated'
    DOCUMENT_GENERATION_FAILED = 'document_generation_failed'
    SIGNATURE_REQUESTED = 'signature_requested'
    SIGNATURE_REQUEST_FAILED = 'signature_request_failed'
    SIGNATURE_STATUS_UPDATED = 'signature_status_updated'
    WEBHOOK_RECEIVED = 'webhook_received'
    RECONCILIATION_DIVERGENCE = 'reconciliation_divergence'

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(50), nullable=False, index=True)
    agreement_id = db.Column(db.String(36), index=True)
    description = db.Column(db.Text)
    event_data = db.Column(db.JSON)
    source = db.Column(db.String(20), nullable=False, default='app')  # app, webhook, system
    severity = db.Column(db.String(20), nullable=False, default='info')  # info, warning, error, critical
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @classmethod
    def log(cls, event_type, agreement_id=None, description=None, event_data=None,
            source='app', severity='info'):
        event = cls(
            event_type=event_type,
            agreement_id=agreement_id,
            description=description,
            event_data=event_data or {},
            source=source,
            severity=severity
        )
        db.session.add(event)
        return event

    def __repr__(self):
        return f'<AuditEvent {self.event_type} {self.agreement_id}>'

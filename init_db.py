from sqlalchemy.exc import SQLAlchemyError

from app import create_app
from models import db, AgreementTemplate

STANDARD_TEMPLATE = """
<h1>Residential Lease Agreement</h1>
<p>This agreement is made on {{currentDate}} between the owner of {{propertyName}}
and <strong>{{rentee.fullname}}</strong> (National ID {{rentee.nationalid}}).</p>
<h2>Premises</h2>
<p>{{property.address}}</p>
<p>Unit: {{unitNumber}}</p>
<h2>Term</h2>
<p>The lease begins on {{startDate}} and ends on {{endDate}}.</p>
<h2>Rent and Deposit</h2>
<p>Monthly rent of {{monthlyRent}} is due on day {{paymentDueDay}} of each month.
A deposit of {{depositAmount}} is payable on signing.</p>
<p>Payments go to {{bank.name}}, {{bank.branch}} branch, account {{bank.accountnumber}}.</p>
<h2>Notice</h2>
<p>Either party may end this agreement with {{noticePeriod}} days written notice.</p>
<h2>Additional Terms</h2>
<p>{{additionalTerms}}</p>
<p>For Landlord:</p>
<p>email1</p>
<p>Date1</p>
<p>For Tenant:</p>
<p>email2</p>
<p>Date2</p>
"""

INITIAL_TEMPLATES = [
    {"name": "Standard Residential Lease", "content": STANDARD_TEMPLATE.strip()},
]


def init_db():
    app = create_app()
    with app.app_context():
        # Create all tables
        db.create_all()

        if AgreementTemplate.query.count() == 0:
            print("Initializing database with agreement templates...")
            for template_data in INITIAL_TEMPLATES:
                print(f"Adding template: {template_data['name']}")
                db.session.add(AgreementTemplate(**template_data))

            try:
                db.session.commit()
                print("Successfully initialized database with agreement templates!")
            except SQLAlchemyError as e:
                db.session.rollback()
                print(f"Error initializing database: {str(e)}")
        else:
            print("Templates already exist in database!")

        print("\nCurrent templates in database:")
        for template in AgreementTemplate.query.order_by(AgreementTemplate.name).all():
            print(f"{template.id}: {template.name}")


if __name__ == '__main__':
    init_db()

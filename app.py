import logging
import warnings

from sqlalchemy.exc import SAWarning
warnings.filterwarnings('ignore', category=SAWarning, message='.*relationship .* will copy column .*')

from flask import Flask, jsonify
from flask_migrate import Migrate

from models import db
from routes import register_blueprints
from services.agreements import (
    AgreementStore,
    AgreementWorkflow,
    DocumentBuilder,
    EviaSignClient,
    InFlightRegistry,
)
from services.supabase_storage import SupabaseStorage


def build_workflow(app, storage=None, gateway=None):
    """Wire the agreement workflow from app config."""
    storage = storage or SupabaseStorage(
        url=app.config.get('SUPABASE_URL'),
        key=app.config.get('SUPABASE_KEY'),
        bucket=app.config.get('AGREEMENT_FILES_BUCKET', 'files')
    )
    gateway = gateway or EviaSignClient.from_config(app.config)
    multi_unit_type = app.config.get('MULTI_UNIT_PROPERTY_TYPE', 'apartment')

    if not app.config.get('EVIA_WEBHOOK_URL'):
        app.logger.warning("EVIA_WEBHOOK_URL is not set; signature status will only update on manual refresh")
    if gateway is not None and getattr(gateway, 'is_mock_mode', lambda: False)():
        app.logger.warning("EVIA_ACCESS_TOKEN is not set; Evia Sign client running in mock mode")

    workflow = AgreementWorkflow(
        store=AgreementStore(multi_unit_type=multi_unit_type),
        documents=DocumentBuilder(storage),
        gateway=gateway,
        in_flight=InFlightRegistry(),
        webhook_url=app.config.get('EVIA_WEBHOOK_URL'),
        multi_unit_type=multi_unit_type
    )
    return workflow, storage


def create_app(config_object='config.Config', storage=None, gateway=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    # Initialize extensions
    db.init_app(app)
    Migrate(app, db)

    workflow, storage = build_workflow(app, storage=storage, gateway=gateway)
    app.extensions['agreement_workflow'] = workflow
    app.extensions['agreement_storage'] = storage

    # Register blueprints
    register_blueprints(app)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Not found'}), 404

    @app.errorhandler(500)
    def server_error(error):
        return jsonify({'success': False, 'error': 'Something went wrong. Please try again.'}), 500

    return app


if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        db.create_all()
    app.run(host='0.0.0.0', port=5005, debug=True)

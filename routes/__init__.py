from .agreements import agreements_bp


def register_blueprints(app):
    app.register_blueprint(agreements_bp)

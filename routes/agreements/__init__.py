# routes/agreements/__init__.py
"""
Rental Agreement Routes Package

JSON endpoints that drive the agreement signature workflow:
- api.py: save, review, send, refresh, preview and lookup endpoints
- webhook.py: Evia Sign callback endpoint
"""

from flask import Blueprint

# Create the blueprint - all sub-modules will register routes on this
agreements_bp = Blueprint('agreements', __name__, url_prefix='/agreements')

# Import all route modules AFTER blueprint creation
from . import api
from . import webhook

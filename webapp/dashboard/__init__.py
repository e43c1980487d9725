"""
Operator Dashboard Blueprint
Service and incident management for signed-in operators
"""

from flask import Blueprint

dashboard_bp = Blueprint('dashboard', __name__, url_prefix='/dashboard')

from . import routes

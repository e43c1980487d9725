"""
Status Page Blueprint
Public status page showing the aggregated health of all services
"""

from flask import Blueprint

status_bp = Blueprint('status', __name__)

from . import routes
from .models import Service, Incident, IncidentUpdate, IncidentStatus, IncidentImpact
from .aggregator import ServiceStatus, aggregate_status

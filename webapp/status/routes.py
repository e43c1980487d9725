"""
Status Page Routes
Public routes for viewing system status and incident history
"""

import json
import logging
from flask import render_template, jsonify, Response

from . import status_bp
from .aggregator import get_status_summary, get_status_display
from .models import Service, Incident
from realtime import Subscription, ALL_CHANNELS, KEEPALIVE

logger = logging.getLogger(__name__)

RECENT_INCIDENT_DAYS = 90


def build_status_snapshot():
    """Status summary plus active incidents, as pushed to live subscribers"""
    summary = get_status_summary(Service.get_all())
    summary['active_incidents'] = [
        incident.to_dict(include_updates=False) for incident in Incident.get_active()
    ]
    return summary


@status_bp.route('/')
def index():
    """Main status page"""
    summary = None
    active_incidents = []
    recent_incidents = []
    services_by_id = {}
    error = None

    try:
        services = Service.get_all()
        summary = get_status_summary(services)
        services_by_id = {service.id: service.name for service in services}

        # Get active incidents with their updates
        active_incidents = Incident.get_active()
        for incident in active_incidents:
            incident.load_updates()

        recent_incidents = Incident.get_recent(days=RECENT_INCIDENT_DAYS)
    except Exception as e:
        logger.error(f"Error loading status page: {e}")
        error = 'Unable to load current system status. Please try again shortly.'

    return render_template(
        'status/index.html',
        summary=summary,
        active_incidents=active_incidents,
        recent_incidents=recent_incidents,
        recent_days=RECENT_INCIDENT_DAYS,
        services_by_id=services_by_id,
        error=error,
        get_status_display=get_status_display
    )


@status_bp.route('/api/status')
def api_status():
    """JSON API for current status"""
    try:
        return jsonify(get_status_summary(Service.get_all()))
    except Exception as e:
        logger.error(f"Error loading status: {e}")
        return jsonify({'error': 'Status temporarily unavailable'}), 503


@status_bp.route('/api/incidents')
def api_incidents():
    """JSON API for incidents"""
    try:
        active_incidents = Incident.get_active()
        recent_incidents = Incident.get_recent(days=RECENT_INCIDENT_DAYS)
    except Exception as e:
        logger.error(f"Error loading incidents: {e}")
        return jsonify({'error': 'Incidents temporarily unavailable'}), 503

    return jsonify({
        'active': [i.to_dict(include_updates=False) for i in active_incidents],
        'recent': [i.to_dict(include_updates=False) for i in recent_incidents]
    })


@status_bp.route('/api/incidents/<int:incident_id>')
def api_incident_detail(incident_id):
    """JSON API for single incident with updates"""
    try:
        incident = Incident.get_by_id(incident_id)
    except Exception as e:
        logger.error(f"Error loading incident {incident_id}: {e}")
        return jsonify({'error': 'Incident temporarily unavailable'}), 503

    if not incident:
        return jsonify({'error': 'Incident not found'}), 404

    return jsonify(incident.to_dict())


@status_bp.route('/api/stream')
def api_stream():
    """Server-sent events: current status, then a fresh copy on every change"""
    subscription = Subscription(ALL_CHANNELS, build_status_snapshot)

    def generate():
        try:
            with subscription:
                for snapshot in subscription.snapshots():
                    if snapshot is KEEPALIVE:
                        yield ': keepalive\n\n'
                    else:
                        yield f"event: status\ndata: {json.dumps(snapshot)}\n\n"
        except Exception as e:
            logger.error(f"Status stream failed: {e}")
            yield 'event: error\ndata: {"error": "Status stream unavailable"}\n\n'

    return Response(generate(), mimetype='text/event-stream', headers={
        'Cache-Control': 'no-cache',
        'X-Accel-Buffering': 'no'
    })

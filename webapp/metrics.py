"""
Status Page - Prometheus Metrics Endpoint
Exposes service and incident state in Prometheus format for Grafana visualization
"""

from flask import Blueprint, Response

from status.aggregator import ServiceStatus, aggregate_status
from status.models import Service, Incident

metrics_bp = Blueprint('metrics', __name__)


def generate_metrics():
    """Generate Prometheus-format metrics"""
    lines = []

    # Help and type declarations
    lines.append('# HELP statuspage_services_total Number of services by status')
    lines.append('# TYPE statuspage_services_total gauge')

    lines.append('# HELP statuspage_overall_severity Overall status severity (0=operational, 3=major outage)')
    lines.append('# TYPE statuspage_overall_severity gauge')

    lines.append('# HELP statuspage_incidents_total Number of incidents by status and impact')
    lines.append('# TYPE statuspage_incidents_total gauge')

    lines.append('# HELP statuspage_incidents_active Number of unresolved incidents')
    lines.append('# TYPE statuspage_incidents_active gauge')

    # Service counts and overall severity
    try:
        services = Service.get_all()
        counts = {status.value: 0 for status in ServiceStatus}
        for service in services:
            counts[ServiceStatus.coerce(service.status).value] += 1

        for status, count in counts.items():
            lines.append(f'statuspage_services_total{{status="{status}"}} {count}')

        lines.append(f'statuspage_overall_severity {aggregate_status(services).severity}')
    except Exception as e:
        lines.append(f'# Error getting service counts: {e}')

    # Incident counts
    try:
        active = 0
        for row in Incident.count_by_status_and_impact():
            lines.append(
                f'statuspage_incidents_total{{status="{row["status"]}",impact="{row["impact"]}"}} {row["count"]}'
            )
            if row['status'] != 'resolved':
                active += row['count']
        lines.append(f'statuspage_incidents_active {active}')
    except Exception as e:
        lines.append(f'# Error getting incident counts: {e}')

    return '\n'.join(lines) + '\n'


@metrics_bp.route('/metrics')
def prometheus_metrics():
    """Prometheus metrics endpoint"""
    metrics = generate_metrics()
    return Response(metrics, mimetype='text/plain; version=0.0.4; charset=utf-8')

"""
Tests for the Prometheus metrics endpoint
"""

from unittest.mock import patch

import pytest

from status.models import Service


class TestMetricsEndpoint:
    """Test Prometheus output"""

    def test_metrics_content_type(self, client):
        response = client.get('/metrics')
        assert response.status_code == 200
        assert response.mimetype == 'text/plain'

    def test_service_and_incident_metrics(self, client):
        services = [
            Service(id=1, name='API', status='Operational'),
            Service(id=2, name='Web', status='Major Outage'),
        ]
        counts = [
            {'status': 'investigating', 'impact': 'major', 'count': 2},
            {'status': 'resolved', 'impact': 'minor', 'count': 5},
        ]
        with patch('metrics.Service') as service_cls, patch('metrics.Incident') as incident_cls:
            service_cls.get_all.return_value = services
            incident_cls.count_by_status_and_impact.return_value = counts
            body = client.get('/metrics').get_data(as_text=True)

        assert 'statuspage_services_total{status="Major Outage"} 1' in body
        assert 'statuspage_services_total{status="Partial Outage"} 0' in body
        assert 'statuspage_overall_severity 3' in body
        assert 'statuspage_incidents_total{status="resolved",impact="minor"} 5' in body
        assert 'statuspage_incidents_active 2' in body

    def test_metrics_survive_database_errors(self, client):
        body = client.get('/metrics').get_data(as_text=True)
        assert '# Error getting service counts' in body

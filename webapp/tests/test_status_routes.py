"""
Tests for the public status page and JSON API
"""

import json
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from realtime import KEEPALIVE
from status.models import Service, Incident, IncidentUpdate


@pytest.fixture
def services():
    return [
        Service(id=1, name='API', status='Operational'),
        Service(id=2, name='Web', status='Partial Outage'),
    ]


@pytest.fixture
def active_incident():
    opened = datetime(2024, 5, 1, 10, 0)
    incident = Incident(id=9, title='Web errors', description='5xx on checkout',
                        impact='major', status='identified', services=[2],
                        created_at=opened, updated_at=opened, updates=[
                            IncidentUpdate(id=1, incident_id=9, status='identified',
                                           text='Incident identified: 5xx on checkout',
                                           timestamp=opened)
                        ])
    incident.load_updates = MagicMock(return_value=incident)
    return incident


@pytest.fixture
def resolved_incident():
    opened = datetime(2024, 4, 1, 9, 0)
    return Incident(id=4, title='DNS outage', impact='critical', status='resolved',
                    services=[1], created_at=opened, updated_at=opened,
                    resolved_at=datetime(2024, 4, 1, 11, 0))


class TestStatusPage:
    """Test the public status page"""

    def test_page_shows_overall_and_services(self, client, services, active_incident, resolved_incident):
        with patch('status.routes.Service') as service_cls, \
                patch('status.routes.Incident') as incident_cls:
            service_cls.get_all.return_value = services
            incident_cls.get_active.return_value = [active_incident]
            incident_cls.get_recent.return_value = [resolved_incident]

            response = client.get('/')

        assert response.status_code == 200
        assert b'Partial system outage' in response.data
        assert b'API' in response.data
        assert b'Web errors' in response.data
        assert b'Incident identified: 5xx on checkout' in response.data
        assert b'DNS outage' in response.data
        active_incident.load_updates.assert_called_once()

    def test_page_with_no_services(self, client):
        with patch('status.routes.Service') as service_cls, \
                patch('status.routes.Incident') as incident_cls:
            service_cls.get_all.return_value = []
            incident_cls.get_active.return_value = []
            incident_cls.get_recent.return_value = []

            response = client.get('/')

        assert response.status_code == 200
        assert b'All systems operational' in response.data
        assert b'No services to display.' in response.data

    def test_page_renders_when_database_is_down(self, client):
        with patch('status.routes.Service') as service_cls:
            service_cls.get_all.side_effect = RuntimeError('no database')
            response = client.get('/')

        assert response.status_code == 200
        assert b'Unable to load current system status' in response.data


class TestStatusApi:
    """Test JSON endpoints"""

    def test_api_status(self, client, services):
        with patch('status.routes.Service') as service_cls:
            service_cls.get_all.return_value = services
            response = client.get('/api/status')

        data = response.get_json()
        assert response.status_code == 200
        assert data['overall'] == 'Partial Outage'
        assert len(data['services']) == 2

    def test_api_status_unavailable(self, client):
        with patch('status.routes.Service') as service_cls:
            service_cls.get_all.side_effect = RuntimeError('no database')
            response = client.get('/api/status')

        assert response.status_code == 503
        assert 'error' in response.get_json()

    def test_api_incidents(self, client, active_incident, resolved_incident):
        with patch('status.routes.Incident') as incident_cls:
            incident_cls.get_active.return_value = [active_incident]
            incident_cls.get_recent.return_value = [resolved_incident]
            response = client.get('/api/incidents')

        data = response.get_json()
        assert [i['id'] for i in data['active']] == [9]
        assert [i['id'] for i in data['recent']] == [4]

    def test_api_incident_detail(self, client, active_incident):
        with patch('status.routes.Incident') as incident_cls:
            incident_cls.get_by_id.return_value = active_incident
            response = client.get('/api/incidents/9')

        data = response.get_json()
        assert data['title'] == 'Web errors'
        assert data['updates'][0]['text'] == 'Incident identified: 5xx on checkout'

    def test_api_incident_not_found(self, client):
        with patch('status.routes.Incident') as incident_cls:
            incident_cls.get_by_id.return_value = None
            response = client.get('/api/incidents/404')

        assert response.status_code == 404
        assert response.get_json() == {'error': 'Incident not found'}

    def test_unknown_api_path_is_json(self, client):
        response = client.get('/api/nothing-here')
        assert response.status_code == 404
        assert response.get_json() == {'error': 'Not found'}


class FakeSubscription:
    def __init__(self, channels, snapshot):
        self.snapshot = snapshot
        self.closed = True

    def __enter__(self):
        self.closed = False
        return self

    def __exit__(self, *args):
        self.closed = True
        return False

    def snapshots(self):
        yield {'overall': 'Operational', 'services': []}
        yield KEEPALIVE


class TestStatusStream:
    """Test the server-sent events endpoint"""

    def test_stream_sends_snapshot_and_keepalive(self, client):
        with patch('status.routes.Subscription', FakeSubscription):
            response = client.get('/api/stream')
            body = response.get_data(as_text=True)

        assert response.mimetype == 'text/event-stream'
        assert response.headers['Cache-Control'] == 'no-cache'
        assert 'event: status\ndata: ' in body
        assert ': keepalive' in body

        payload = body.split('data: ', 1)[1].split('\n\n', 1)[0]
        assert json.loads(payload)['overall'] == 'Operational'

    def test_stream_reports_failure(self, client):
        failing = MagicMock()
        failing.return_value.__enter__.side_effect = RuntimeError('redis down')

        with patch('status.routes.Subscription', failing):
            response = client.get('/api/stream')
            body = response.get_data(as_text=True)

        assert 'event: error' in body

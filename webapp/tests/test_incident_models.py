"""
Tests for the Incident lifecycle
"""

import json
from datetime import datetime, timedelta

import pytest

from realtime import INCIDENTS_CHANNEL
from status.models import Incident, IncidentUpdate, IncidentValidationError


def _executed_sql(cursor):
    return [call[0][0] for call in cursor.execute.call_args_list]


class TestIncidentCreate:
    """Test opening incidents"""

    def test_title_required(self, mock_db, mock_publish):
        conn, _ = mock_db
        with pytest.raises(IncidentValidationError, match='Title is required'):
            Incident.create('  ', 'desc', 'minor', 'investigating', [1])
        conn.cursor.assert_not_called()
        mock_publish.assert_not_called()

    def test_services_required(self, mock_db, mock_publish):
        conn, _ = mock_db
        with pytest.raises(IncidentValidationError, match='at least one affected service'):
            Incident.create('API down', 'desc', 'minor', 'investigating', [])
        conn.cursor.assert_not_called()

    def test_invalid_impact_rejected(self, mock_db, mock_publish):
        with pytest.raises(IncidentValidationError):
            Incident.create('API down', 'desc', 'catastrophic', 'investigating', [1])

    def test_create_writes_incident_and_first_update(self, mock_db, mock_publish):
        conn, cursor = mock_db
        cursor.lastrowid = 12

        incident = Incident.create('API down', 'Requests time out', 'major',
                                   'investigating', [1, 2], created_by=5)

        assert incident.id == 12
        assert incident.services == [1, 2]
        assert incident.created_at == incident.updated_at
        assert incident.resolved_at is None

        statements = _executed_sql(cursor)
        assert 'INSERT INTO status_incidents' in statements[0]
        assert 'INSERT INTO status_incident_updates' in statements[1]
        assert json.loads(cursor.execute.call_args_list[0][0][1][4]) == [1, 2]
        conn.commit.assert_called_once()
        mock_publish.assert_called_once_with(INCIDENTS_CHANNEL, 'created', 12)

    def test_initial_update_text(self, mock_db, mock_publish):
        incident = Incident.create('API down', 'Requests time out', 'minor',
                                   'identified', [1])

        assert len(incident.updates) == 1
        first = incident.updates[0]
        assert first.text == 'Incident identified: Requests time out'
        assert first.status == 'identified'
        assert first.timestamp == incident.created_at

    def test_create_rolls_back_on_failure(self, mock_db, mock_publish):
        conn, cursor = mock_db
        cursor.execute.side_effect = [None, RuntimeError('disk full')]

        with pytest.raises(RuntimeError):
            Incident.create('API down', 'desc', 'minor', 'investigating', [1])

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        mock_publish.assert_not_called()


class TestIncidentUpdates:
    """Test posting timeline updates"""

    def _incident(self):
        return Incident(id=3, title='API down', status='investigating', services=[1],
                        created_at=datetime(2024, 5, 1, 10, 0), updated_at=datetime(2024, 5, 1, 10, 0))

    def test_blank_text_is_ignored(self, mock_db, mock_publish):
        conn, _ = mock_db
        incident = self._incident()

        assert incident.post_update('   ', 'identified') is None
        assert incident.status == 'investigating'
        assert incident.updates == []
        conn.cursor.assert_not_called()
        mock_publish.assert_not_called()

    def test_post_update_changes_status(self, mock_db, mock_publish):
        _, cursor = mock_db
        incident = self._incident()

        update = incident.post_update('Root cause found', 'identified', created_by=2)

        assert update.text == 'Root cause found'
        assert incident.status == 'identified'
        assert incident.updated_at == update.timestamp
        assert incident.updates == [update]
        assert 'UPDATE status_incidents SET status' in _executed_sql(cursor)[1]
        mock_publish.assert_called_once_with(INCIDENTS_CHANNEL, 'updated', 3)

    def test_post_update_with_resolved_status_leaves_resolved_at(self, mock_db, mock_publish):
        incident = self._incident()

        incident.post_update('All clear', 'resolved')

        assert incident.status == 'resolved'
        assert incident.resolved_at is None

    def test_post_update_rejects_unknown_status(self, mock_db, mock_publish):
        with pytest.raises(IncidentValidationError):
            self._incident().post_update('text', 'panicking')


class TestIncidentResolve:
    """Test resolving incidents"""

    def test_resolve_stamps_time_and_appends_entry(self, mock_db, mock_publish):
        incident = Incident(id=8, title='DB slow', status='monitoring', services=[2])

        incident.resolve(created_by=1)

        assert incident.is_resolved
        assert incident.resolved_at is not None
        assert incident.updates[-1].text == 'Incident resolved'
        assert incident.updates[-1].status == 'resolved'
        mock_publish.assert_called_once_with(INCIDENTS_CHANNEL, 'resolved', 8)

    def test_resolving_twice_appends_again(self, mock_db, mock_publish):
        incident = Incident(id=8, title='DB slow', status='monitoring', services=[2])

        incident.resolve()
        incident.resolve()

        assert [u.text for u in incident.updates] == ['Incident resolved', 'Incident resolved']


class TestIncidentQueries:
    """Test loading incidents from rows"""

    def _row(self, **overrides):
        row = {
            'id': 1,
            'title': 'API down',
            'description': 'Timeouts',
            'impact': 'major',
            'status': 'investigating',
            'affected_services': '[1, 3]',
            'created_by': 1,
            'created_at': datetime(2024, 5, 1, 10, 0),
            'updated_at': datetime(2024, 5, 1, 10, 0),
            'resolved_at': None,
        }
        row.update(overrides)
        return row

    def test_from_row_parses_services(self):
        incident = Incident.from_row(self._row())
        assert incident.services == [1, 3]

    def test_from_row_accepts_bytes(self):
        incident = Incident.from_row(self._row(affected_services=b'[4]'))
        assert incident.services == [4]

    def test_get_by_id_loads_updates(self, mock_db):
        _, cursor = mock_db
        cursor.fetchone.return_value = self._row()
        cursor.fetchall.return_value = [{
            'id': 1, 'incident_id': 1, 'status': 'investigating',
            'text': 'Incident identified: Timeouts', 'created_by': 1,
            'timestamp': datetime(2024, 5, 1, 10, 0),
        }]

        incident = Incident.get_by_id(1)

        assert incident.title == 'API down'
        assert len(incident.updates) == 1
        assert incident.updates[0].text == 'Incident identified: Timeouts'

    def test_get_by_id_missing(self, mock_db):
        _, cursor = mock_db
        cursor.fetchone.return_value = None
        assert Incident.get_by_id(404) is None

    def test_get_active_orders_by_impact(self, mock_db):
        _, cursor = mock_db
        cursor.fetchall.return_value = [self._row()]

        active = Incident.get_active()

        sql = cursor.execute.call_args[0][0]
        assert "status != 'resolved'" in sql
        assert "FIELD(impact, 'critical', 'major', 'minor')" in sql
        assert len(active) == 1

    def test_get_recent_uses_window(self, mock_db):
        _, cursor = mock_db
        cursor.fetchall.return_value = []

        Incident.get_recent(days=30)

        assert cursor.execute.call_args[0][1] == (30,)

    def test_timeline_newest_first(self):
        start = datetime(2024, 5, 1, 10, 0)
        incident = Incident(id=1, title='x', updates=[
            IncidentUpdate(text='first', timestamp=start),
            IncidentUpdate(text='second', timestamp=start + timedelta(minutes=5)),
        ])
        assert [u.text for u in incident.timeline()] == ['second', 'first']

    def test_to_dict(self):
        incident = Incident.from_row(self._row())
        data = incident.to_dict()
        assert data['services'] == [1, 3]
        assert data['created_at'] == '2024-05-01T10:00:00'
        assert data['resolved_at'] is None
        assert data['updates'] == []
        assert 'updates' not in incident.to_dict(include_updates=False)

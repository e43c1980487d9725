"""
Status Page Models
Handles services, incidents and incident timeline updates
"""

import json
import logging
from datetime import datetime
from enum import Enum

from models import get_db_connection
from realtime import publish_change, SERVICES_CHANNEL, INCIDENTS_CHANNEL
from .aggregator import ServiceStatus

logger = logging.getLogger(__name__)

RESOLVED_MESSAGE = 'Incident resolved'


class StatusValidationError(ValueError):
    """Raised before any database call when input is invalid"""


class ServiceValidationError(StatusValidationError):
    pass


class IncidentValidationError(StatusValidationError):
    pass


class IncidentStatus(str, Enum):
    INVESTIGATING = 'investigating'
    IDENTIFIED = 'identified'
    MONITORING = 'monitoring'
    RESOLVED = 'resolved'


class IncidentImpact(str, Enum):
    CRITICAL = 'critical'
    MAJOR = 'major'
    MINOR = 'minor'


def _choice(enum_cls, value, label, error_cls):
    """Convert a raw value to an enum member or raise a validation error"""
    try:
        return enum_cls(value)
    except ValueError:
        raise error_cls(f'Invalid {label}: {value!r}')


def _isoformat(value):
    return value.isoformat() if value else None


# =============================================================================
# Service
# =============================================================================

class Service:
    """A named component whose status is set by operators"""

    STATUSES = [status.value for status in ServiceStatus]

    def __init__(self, id=None, name=None, status=ServiceStatus.OPERATIONAL.value,
                 created_at=None, updated_at=None):
        self.id = id
        self.name = name
        self.status = status
        self.created_at = created_at
        self.updated_at = updated_at

    def validate(self):
        """Normalize name and status, raising ServiceValidationError"""
        self.name = (self.name or '').strip()
        if not self.name:
            raise ServiceValidationError('Service name cannot be empty')
        self.status = _choice(ServiceStatus, self.status, 'service status',
                              ServiceValidationError).value

    def save(self):
        """Insert or update service in database"""
        self.validate()
        now = datetime.now()
        conn = get_db_connection()
        cursor = conn.cursor()
        try:
            if self.id is None:
                cursor.execute("""
                    INSERT INTO services (name, status, created_at, updated_at)
                    VALUES (%s, %s, %s, %s)
                """, (self.name, self.status, now, now))
                self.id = cursor.lastrowid
                self.created_at = now
                action = 'created'
            else:
                cursor.execute("""
                    UPDATE services SET name=%s, status=%s, updated_at=%s
                    WHERE id=%s
                """, (self.name, self.status, now, self.id))
                action = 'updated'
            conn.commit()
            self.updated_at = now
        finally:
            cursor.close()
            conn.close()

        publish_change(SERVICES_CHANNEL, action, self.id)
        return self

    def update(self, name=None, status=None):
        """Change the name and/or status of this service"""
        if name is not None:
            self.name = name
        if status is not None:
            self.status = status
        return self.save()

    def delete(self):
        """Delete service from database"""
        if self.id is None:
            return False

        conn = get_db_connection()
        cursor = conn.cursor()
        try:
            cursor.execute("DELETE FROM services WHERE id = %s", (self.id,))
            conn.commit()
            deleted = cursor.rowcount > 0
        finally:
            cursor.close()
            conn.close()

        if deleted:
            publish_change(SERVICES_CHANNEL, 'deleted', self.id)
        return deleted

    @staticmethod
    def create(name, status=ServiceStatus.OPERATIONAL.value):
        """Create and persist a new service"""
        return Service(name=name, status=status).save()

    @staticmethod
    def get_by_id(service_id):
        """Get service by ID"""
        conn = get_db_connection()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute("SELECT * FROM services WHERE id = %s", (service_id,))
            row = cursor.fetchone()
            return Service(**row) if row else None
        finally:
            cursor.close()
            conn.close()

    @staticmethod
    def get_all():
        """Get all services ordered by name"""
        conn = get_db_connection()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute("SELECT * FROM services ORDER BY name ASC")
            return [Service(**row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'status': self.status,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at)
        }

    def __repr__(self):
        return f"<Service {self.name}: {self.status}>"


# =============================================================================
# Incident
# =============================================================================

class Incident:
    """A recorded disruption with an append-only timeline of updates"""

    STATUSES = [status.value for status in IncidentStatus]
    IMPACTS = [impact.value for impact in IncidentImpact]

    def __init__(self, id=None, title=None, description=None,
                 impact=IncidentImpact.MINOR.value,
                 status=IncidentStatus.INVESTIGATING.value, services=None,
                 created_by=None, created_at=None, updated_at=None,
                 resolved_at=None, updates=None):
        self.id = id
        self.title = title
        self.description = description
        self.impact = impact
        self.status = status
        self.services = list(services or [])
        self.created_by = created_by
        self.created_at = created_at
        self.updated_at = updated_at
        self.resolved_at = resolved_at
        self.updates = list(updates or [])

    @property
    def is_resolved(self):
        return self.status == IncidentStatus.RESOLVED.value

    @staticmethod
    def from_row(row):
        """Build an Incident from a status_incidents row"""
        row = dict(row)
        affected = row.pop('affected_services', None)
        if isinstance(affected, (bytes, bytearray)):
            affected = affected.decode('utf-8')
        row['services'] = json.loads(affected) if affected else []
        return Incident(**row)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @staticmethod
    def create(title, description, impact=IncidentImpact.MINOR.value,
               status=IncidentStatus.INVESTIGATING.value, service_ids=None,
               created_by=None):
        """
        Open a new incident.

        Validation happens before touching the database: the title must be
        non-blank and at least one affected service must be given. The new
        incident starts with one synthesized timeline entry.

        Raises:
            IncidentValidationError: on invalid input
        """
        title = (title or '').strip()
        if not title:
            raise IncidentValidationError('Title is required')

        service_ids = list(service_ids or [])
        if not service_ids:
            raise IncidentValidationError('Please select at least one affected service')

        impact = _choice(IncidentImpact, impact, 'impact', IncidentValidationError).value
        status = _choice(IncidentStatus, status, 'status', IncidentValidationError).value
        description = (description or '').strip()

        now = datetime.now()
        incident = Incident(title=title, description=description, impact=impact,
                            status=status, services=service_ids, created_by=created_by,
                            created_at=now, updated_at=now)
        initial = IncidentUpdate(status=status, text=f'Incident identified: {description}',
                                 created_by=created_by, timestamp=now)

        conn = get_db_connection()
        cursor = conn.cursor()
        try:
            cursor.execute("""
                INSERT INTO status_incidents
                (title, description, impact, status, affected_services,
                 created_by, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """, (incident.title, incident.description, incident.impact,
                  incident.status, json.dumps(incident.services),
                  created_by, now, now))
            incident.id = cursor.lastrowid
            initial.incident_id = incident.id
            initial.insert(cursor)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

        incident.updates = [initial]
        logger.info(f"Incident {incident.id} opened: {incident.title} ({incident.impact})")
        publish_change(INCIDENTS_CHANNEL, 'created', incident.id)
        return incident

    def post_update(self, text, status, created_by=None):
        """
        Append a timeline update and move the incident to its status.

        Blank text is ignored and nothing is written. Posting with status
        'resolved' changes the label only; resolved_at is stamped by
        resolve().

        Returns:
            IncidentUpdate or None when text is blank
        """
        if not text or not text.strip():
            return None

        status = _choice(IncidentStatus, status, 'status', IncidentValidationError).value
        now = datetime.now()
        update = IncidentUpdate(incident_id=self.id, status=status, text=text.strip(),
                                created_by=created_by, timestamp=now)

        conn = get_db_connection()
        cursor = conn.cursor()
        try:
            update.insert(cursor)
            cursor.execute("""
                UPDATE status_incidents SET status=%s, updated_at=%s
                WHERE id=%s
            """, (status, now, self.id))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

        self.status = status
        self.updated_at = now
        self.updates.append(update)
        publish_change(INCIDENTS_CHANNEL, 'updated', self.id)
        return update

    def resolve(self, created_by=None):
        """
        Mark incident as resolved with timestamp.

        Every call appends an 'Incident resolved' entry and restamps
        resolved_at, so callers check is_resolved first.
        """
        now = datetime.now()
        resolved = IncidentStatus.RESOLVED.value
        update = IncidentUpdate(incident_id=self.id, status=resolved, text=RESOLVED_MESSAGE,
                                created_by=created_by, timestamp=now)

        conn = get_db_connection()
        cursor = conn.cursor()
        try:
            update.insert(cursor)
            cursor.execute("""
                UPDATE status_incidents SET status=%s, resolved_at=%s, updated_at=%s
                WHERE id=%s
            """, (resolved, now, now, self.id))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

        self.status = resolved
        self.resolved_at = now
        self.updated_at = now
        self.updates.append(update)
        logger.info(f"Incident {self.id} resolved")
        publish_change(INCIDENTS_CHANNEL, 'resolved', self.id)
        return update

    # =========================================================================
    # Timeline
    # =========================================================================

    def get_updates(self):
        """Get all updates for this incident, oldest first"""
        return IncidentUpdate.get_by_incident(self.id)

    def load_updates(self):
        self.updates = self.get_updates()
        return self

    def timeline(self):
        """Updates newest first, as shown on the incident page"""
        return sorted(self.updates, key=lambda u: u.timestamp or datetime.min, reverse=True)

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    def get_by_id(incident_id):
        """Get incident by ID with its updates"""
        conn = get_db_connection()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute("SELECT * FROM status_incidents WHERE id = %s", (incident_id,))
            row = cursor.fetchone()
        finally:
            cursor.close()
            conn.close()

        if not row:
            return None
        return Incident.from_row(row).load_updates()

    @staticmethod
    def get_all():
        """Get all incidents, newest first"""
        conn = get_db_connection()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute("SELECT * FROM status_incidents ORDER BY created_at DESC")
            return [Incident.from_row(row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    @staticmethod
    def get_active():
        """Get all unresolved incidents, most severe impact first"""
        conn = get_db_connection()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute("""
                SELECT * FROM status_incidents
                WHERE status != 'resolved'
                ORDER BY FIELD(impact, 'critical', 'major', 'minor'), created_at DESC
            """)
            return [Incident.from_row(row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    @staticmethod
    def get_recent(days=90):
        """Get incidents resolved in the last N days"""
        conn = get_db_connection()
        cursor = conn.cursor(dictionary=True)
        try:
            # Incidents closed through a plain update have no resolved_at
            cursor.execute("""
                SELECT * FROM status_incidents
                WHERE status = 'resolved'
                AND COALESCE(resolved_at, updated_at) >= DATE_SUB(NOW(), INTERVAL %s DAY)
                ORDER BY COALESCE(resolved_at, updated_at) DESC
            """, (days,))
            return [Incident.from_row(row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    @staticmethod
    def count_by_status_and_impact():
        """Incident counts grouped by (status, impact)"""
        conn = get_db_connection()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute("""
                SELECT status, impact, COUNT(*) as count
                FROM status_incidents
                GROUP BY status, impact
            """)
            return cursor.fetchall()
        finally:
            cursor.close()
            conn.close()

    def to_dict(self, include_updates=True):
        data = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'impact': self.impact,
            'status': self.status,
            'services': self.services,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
            'resolved_at': _isoformat(self.resolved_at)
        }
        if include_updates:
            data['updates'] = [update.to_dict() for update in self.updates]
        return data

    def __repr__(self):
        return f"<Incident {self.id}: {self.title} ({self.status})>"


class IncidentUpdate:
    """Timeline updates for incidents"""

    def __init__(self, id=None, incident_id=None, status=None, text=None,
                 created_by=None, timestamp=None):
        self.id = id
        self.incident_id = incident_id
        self.status = status
        self.text = text
        self.created_by = created_by
        self.timestamp = timestamp

    def insert(self, cursor):
        """Insert this update using the caller's cursor and transaction"""
        cursor.execute("""
            INSERT INTO status_incident_updates
            (incident_id, status, message, created_by, created_at)
            VALUES (%s, %s, %s, %s, %s)
        """, (self.incident_id, self.status, self.text, self.created_by, self.timestamp))
        self.id = cursor.lastrowid
        return self.id

    @staticmethod
    def get_by_incident(incident_id):
        """Get all updates for an incident in the order they were posted"""
        conn = get_db_connection()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute("""
                SELECT id, incident_id, status, message AS text, created_by,
                       created_at AS timestamp
                FROM status_incident_updates
                WHERE incident_id = %s
                ORDER BY created_at ASC, id ASC
            """, (incident_id,))
            return [IncidentUpdate(**row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def to_dict(self):
        return {
            'id': self.id,
            'status': self.status,
            'text': self.text,
            'created_by': self.created_by,
            'timestamp': _isoformat(self.timestamp)
        }

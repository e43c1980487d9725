"""
Status Aggregation for Status Page
Reduces the statuses of all services to one overall status
"""

import logging
from datetime import datetime
from enum import Enum

logger = logging.getLogger(__name__)


class ServiceStatus(str, Enum):
    """Service status, declared in ascending order of severity"""

    OPERATIONAL = 'Operational'
    DEGRADED_PERFORMANCE = 'Degraded Performance'
    PARTIAL_OUTAGE = 'Partial Outage'
    MAJOR_OUTAGE = 'Major Outage'

    @property
    def severity(self):
        return SEVERITY[self]

    @classmethod
    def choices(cls):
        """(value, label) pairs for select fields"""
        return [(status.value, status.value) for status in cls]

    @classmethod
    def coerce(cls, value):
        """
        Map a stored value to a ServiceStatus.

        Values outside the enumeration count as Operational so a legacy row
        never raises while rendering the status page.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            logger.warning(f"Unknown service status {value!r}, treating as Operational")
            return cls.OPERATIONAL


SEVERITY = {
    ServiceStatus.OPERATIONAL: 0,
    ServiceStatus.DEGRADED_PERFORMANCE: 1,
    ServiceStatus.PARTIAL_OUTAGE: 2,
    ServiceStatus.MAJOR_OUTAGE: 3,
}

# Status display configuration
STATUS_DISPLAY = {
    ServiceStatus.OPERATIONAL: {
        'text': 'Operational',
        'color': 'green',
        'icon': 'check-circle'
    },
    ServiceStatus.DEGRADED_PERFORMANCE: {
        'text': 'Degraded Performance',
        'color': 'yellow',
        'icon': 'exclamation-triangle'
    },
    ServiceStatus.PARTIAL_OUTAGE: {
        'text': 'Partial Outage',
        'color': 'orange',
        'icon': 'exclamation-circle'
    },
    ServiceStatus.MAJOR_OUTAGE: {
        'text': 'Major Outage',
        'color': 'red',
        'icon': 'times-circle'
    },
    'unknown': {
        'text': 'Unknown',
        'color': 'gray',
        'icon': 'question-circle'
    }
}

# Overall status messages
OVERALL_MESSAGES = {
    ServiceStatus.OPERATIONAL: 'All systems operational',
    ServiceStatus.DEGRADED_PERFORMANCE: 'Some systems experiencing degraded performance',
    ServiceStatus.PARTIAL_OUTAGE: 'Partial system outage',
    ServiceStatus.MAJOR_OUTAGE: 'Major system outage',
}


def _status_of(item):
    """Pull the status out of a Service, a row dict, or a bare value"""
    if isinstance(item, dict):
        return item.get('status')
    if isinstance(item, (str, ServiceStatus)) or item is None:
        return item
    return getattr(item, 'status', None)


def worse_status(current, new):
    """
    Compare two statuses and return the worse one.

    Order: Operational < Degraded Performance < Partial Outage < Major Outage

    Args:
        current: current status
        new: status to compare against it

    Returns:
        ServiceStatus: the more severe of the two
    """
    current = ServiceStatus.coerce(current)
    new = ServiceStatus.coerce(new)

    if new.severity > current.severity:
        return new
    return current


def aggregate_status(services):
    """
    Get the overall status for a collection of services.

    Args:
        services: iterable of Service objects, row dicts or status values

    Returns:
        ServiceStatus: the most severe status present, Operational when empty
    """
    statuses = [ServiceStatus.coerce(_status_of(item)) for item in services]
    if not statuses:
        return ServiceStatus.OPERATIONAL

    return max(statuses, key=lambda status: status.severity)


def get_status_display(status):
    """
    Get display information for a status.

    Args:
        status: status value

    Returns:
        dict: containing text, color, and icon
    """
    try:
        return STATUS_DISPLAY[ServiceStatus(status)].copy()
    except ValueError:
        return STATUS_DISPLAY['unknown'].copy()


def get_overall_message(status):
    """Get the banner message for an overall status"""
    return OVERALL_MESSAGES[ServiceStatus.coerce(status)]


def get_status_summary(services):
    """
    Build the status payload shared by the status page, API and event stream.

    Returns:
        dict: containing:
            - services: list of service dicts with display info
            - overall: overall status value
            - overall_message: banner message
            - overall_display: display info for the overall status
            - last_updated: timestamp
    """
    services = list(services)
    overall = aggregate_status(services)

    result = {
        'services': [],
        'overall': overall.value,
        'overall_message': get_overall_message(overall),
        'overall_display': get_status_display(overall),
        'last_updated': datetime.now().isoformat()
    }

    for service in services:
        entry = service.to_dict() if hasattr(service, 'to_dict') else dict(service)
        entry['display'] = get_status_display(entry.get('status'))
        result['services'].append(entry)

    return result

"""
Pytest configuration and fixtures for status page tests
"""

import os
import sys
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

# Ensure the webapp module is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['FLASK_DEBUG'] = 'true'
os.environ['SECRET_KEY'] = 'test-secret-key-for-testing-only'
os.environ['ENV_FILE'] = os.devnull
# Don't set DB_PASSWORD in CI - allows graceful test mode without database
if 'DB_PASSWORD' not in os.environ:
    for key in ['DB_PASSWORD', 'DB_HOST', 'DB_USER', 'DB_NAME']:
        os.environ.pop(key, None)
os.environ['REDIS_URL'] = os.environ.get('REDIS_URL', 'redis://localhost:6379/1')
os.environ['RATELIMIT_STORAGE_URI'] = 'memory://'
os.environ['RATELIMIT_ENABLED'] = 'false'


@pytest.fixture(scope='session')
def app():
    """Create application for testing"""
    from app import app as flask_app

    flask_app.config.update({
        'TESTING': True,
        'WTF_CSRF_ENABLED': False,  # Disable CSRF for testing
        'LOGIN_DISABLED': False,
    })

    yield flask_app


@pytest.fixture
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture
def operator():
    """An operator that exists without a database"""
    from models import Operator
    op = Operator(id=1, email='ops@acme-status.com', created_at=datetime(2024, 1, 1))
    op.set_password('correct-horse')
    return op


@pytest.fixture
def operator_session(client, operator):
    """
    Client signed in as an operator.
    The user loader is patched so no database lookup happens.
    """
    from models import Operator
    with patch.object(Operator, 'get_by_id', return_value=operator):
        with client.session_transaction() as sess:
            sess['_user_id'] = '1'
            sess['_fresh'] = True
        yield client


@pytest.fixture
def mock_db():
    """
    Patch the connection used by status models.
    Yields (connection, cursor) mocks.
    """
    conn = MagicMock()
    cursor = MagicMock()
    cursor.lastrowid = 1
    cursor.rowcount = 1
    conn.cursor.return_value = cursor
    with patch('status.models.get_db_connection', return_value=conn):
        yield conn, cursor


@pytest.fixture
def mock_publish():
    """Capture change events instead of sending them to Redis"""
    with patch('status.models.publish_change') as publish:
        yield publish

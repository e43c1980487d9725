"""
Status Page - Database Models
Handles database connections and operator accounts
"""

import os
import mysql.connector
from mysql.connector import pooling
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash

# Database connection pool
db_pool = None


def init_db_pool():
    """Initialize database connection pool"""
    global db_pool

    # Validate required database configuration
    db_password = os.getenv('DB_PASSWORD')
    if not db_password:
        raise RuntimeError(
            "CRITICAL: DB_PASSWORD environment variable is required. "
            "Please set it in /opt/statuspage/.env"
        )

    db_config = {
        'host': os.getenv('DB_HOST', 'localhost'),
        'user': os.getenv('DB_USER', 'statuspage_app'),
        'password': db_password,
        'database': os.getenv('DB_NAME', 'statuspage_db'),
        'pool_name': 'statuspage_pool',
        'pool_size': int(os.getenv('DB_POOL_SIZE', '5'))
    }

    db_pool = pooling.MySQLConnectionPool(**db_config)
    return db_pool


def get_db_connection():
    """Get a connection from the pool"""
    global db_pool
    if db_pool is None:
        init_db_pool()
    return db_pool.get_connection()


# =============================================================================
# Operator Model
# =============================================================================

class Operator:
    """Operator account allowed to manage services and incidents"""

    def __init__(self, id=None, email=None, password_hash=None,
                 created_at=None, last_login=None):
        self.id = id
        self.email = email
        self.password_hash = password_hash
        self.created_at = created_at or datetime.now()
        self.last_login = last_login

    # =========================================================================
    # Password Methods
    # =========================================================================

    def set_password(self, password):
        """Hash and set password"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Verify password"""
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    # =========================================================================
    # Flask-Login Required Properties
    # =========================================================================

    @property
    def is_authenticated(self):
        return True

    @property
    def is_active(self):
        return True

    @property
    def is_anonymous(self):
        return False

    def get_id(self):
        return str(self.id)

    # =========================================================================
    # Database Operations
    # =========================================================================

    def save(self):
        """Save operator to database (insert or update)"""
        conn = get_db_connection()
        cursor = conn.cursor()

        try:
            if self.id is None:
                cursor.execute("""
                    INSERT INTO operators (email, password_hash, created_at)
                    VALUES (%s, %s, %s)
                """, (self.email, self.password_hash, self.created_at))
                self.id = cursor.lastrowid
            else:
                cursor.execute("""
                    UPDATE operators SET email = %s, password_hash = %s
                    WHERE id = %s
                """, (self.email, self.password_hash, self.id))

            conn.commit()
            return self

        finally:
            cursor.close()
            conn.close()

    def update_last_login(self):
        """Stamp the last successful login"""
        self.last_login = datetime.now()
        conn = get_db_connection()
        cursor = conn.cursor()
        try:
            cursor.execute(
                "UPDATE operators SET last_login = %s WHERE id = %s",
                (self.last_login, self.id)
            )
            conn.commit()
        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Static Query Methods
    # =========================================================================

    @staticmethod
    def get_by_id(operator_id):
        """Get operator by ID"""
        conn = get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute("SELECT * FROM operators WHERE id = %s", (operator_id,))
            row = cursor.fetchone()

            if row:
                return Operator(**row)
            return None
        finally:
            cursor.close()
            conn.close()

    @staticmethod
    def get_by_email(email):
        """Get operator by email address"""
        conn = get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute("SELECT * FROM operators WHERE email = %s", (email,))
            row = cursor.fetchone()

            if row:
                return Operator(**row)
            return None
        finally:
            cursor.close()
            conn.close()

    @staticmethod
    def email_exists(email):
        """Check if an email is already registered"""
        conn = get_db_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT COUNT(*) FROM operators WHERE email = %s", (email,))
            return cursor.fetchone()[0] > 0
        finally:
            cursor.close()
            conn.close()

    def to_dict(self):
        """Convert to dictionary (without credentials)"""
        return {
            'id': self.id,
            'email': self.email,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'last_login': self.last_login.isoformat() if self.last_login else None
        }

    def __repr__(self):
        return f"<Operator {self.email}>"

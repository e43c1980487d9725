"""
Status Page - Flask Web Application
Public service status and incident communication for operators
"""

import os
import time
import logging
from datetime import datetime

from flask import Flask, render_template, request, redirect, url_for, flash, jsonify, session, g
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from flask_wtf import FlaskForm
from flask_wtf.csrf import CSRFProtect, CSRFError
from flask_limiter import Limiter
from flask_talisman import Talisman
from wtforms import StringField, PasswordField, SubmitField
from wtforms.validators import DataRequired, Email, Length, EqualTo, ValidationError
from dotenv import load_dotenv
import redis

from models import Operator, init_db_pool, get_db_connection

# Load environment variables
load_dotenv(os.getenv('ENV_FILE', '/opt/statuspage/.env'))

# Configure logging
log_handlers = [logging.StreamHandler()]
log_dir = os.getenv('LOG_DIR')
if log_dir:
    log_handlers.append(logging.FileHandler(os.path.join(log_dir, 'webapp.log')))

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=log_handlers
)
logger = logging.getLogger(__name__)

# Security logger for audit trail
security_logger = logging.getLogger('security')
if log_dir:
    security_handler = logging.FileHandler(os.path.join(log_dir, 'security.log'))
    security_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    security_logger.addHandler(security_handler)
security_logger.setLevel(logging.INFO)


# =============================================================================
# Configuration Validation - Fail-fast on missing secrets
# =============================================================================

def validate_required_config():
    """Validate that required configuration is present. Fail fast if missing."""
    required_vars = {
        'SECRET_KEY': 'Flask secret key for session security',
        'DB_PASSWORD': 'Database password',
    }

    missing = []
    insecure = []

    for var, description in required_vars.items():
        value = os.getenv(var)
        if not value:
            missing.append(f"  - {var}: {description}")
        elif var == 'SECRET_KEY' and 'change-this' in value.lower():
            insecure.append(f"  - {var}: Using insecure default value")

    if missing or insecure:
        error_msg = "\n\nCRITICAL CONFIGURATION ERROR\n" + "=" * 40 + "\n"
        if missing:
            error_msg += "Missing required environment variables:\n" + "\n".join(missing) + "\n"
        if insecure:
            error_msg += "Insecure configuration detected:\n" + "\n".join(insecure) + "\n"
        error_msg += "\nPlease configure these in /opt/statuspage/.env\n"

        # In production, fail fast. In development, warn but continue.
        if os.getenv('FLASK_ENV') == 'production' or os.getenv('FLASK_DEBUG', '').lower() != 'true':
            logger.critical(error_msg)
            raise RuntimeError(error_msg)
        else:
            logger.warning(error_msg)


# Validate configuration on startup
validate_required_config()


# =============================================================================
# Initialize Flask app with secure configuration
# =============================================================================

app = Flask(__name__)

# Secret key - must be set in environment
app.config['SECRET_KEY'] = os.getenv('SECRET_KEY')
if not app.config['SECRET_KEY']:
    # Only for development - production validated above
    app.config['SECRET_KEY'] = os.urandom(32).hex()
    logger.warning("Using randomly generated SECRET_KEY - sessions will not persist across restarts")

app.config['WTF_CSRF_ENABLED'] = True
app.config['MAX_CONTENT_LENGTH'] = 1 * 1024 * 1024  # 1MB, forms only

# Session security configuration
app.config['SESSION_COOKIE_SECURE'] = os.getenv('FLASK_ENV') == 'production'  # HTTPS only in production
app.config['SESSION_COOKIE_HTTPONLY'] = True  # Prevent JavaScript access
app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'  # CSRF protection
app.config['PERMANENT_SESSION_LIFETIME'] = 86400  # 24 hours

# Seconds before inline success/error messages clear themselves
app.config['FLASH_DISMISS_SECONDS'] = int(os.getenv('FLASH_DISMISS_SECONDS', '5'))


# =============================================================================
# Security Headers with Flask-Talisman
# =============================================================================

csp = {
    'default-src': "'self'",
    'script-src': [
        "'self'",
        "https://cdn.jsdelivr.net",
    ],
    'style-src': [
        "'self'",
        "'unsafe-inline'",
        "https://cdn.jsdelivr.net",
    ],
    'font-src': [
        "'self'",
        "https://cdn.jsdelivr.net",
    ],
    'img-src': [
        "'self'",
        "data:",
    ],
    'connect-src': "'self'",
    'frame-ancestors': "'none'",
}

# Only force HTTPS in production
talisman = Talisman(
    app,
    force_https=os.getenv('FLASK_ENV') == 'production',
    session_cookie_secure=os.getenv('FLASK_ENV') == 'production',
    strict_transport_security=True,
    strict_transport_security_max_age=31536000,  # 1 year
    strict_transport_security_include_subdomains=True,
    content_security_policy=csp,
    content_security_policy_nonce_in=['script-src'],
    referrer_policy='strict-origin-when-cross-origin',
    feature_policy={
        'geolocation': "'none'",
        'camera': "'none'",
        'microphone': "'none'",
    }
)


# =============================================================================
# Rate Limiting with Flask-Limiter
# =============================================================================

def get_real_ip():
    """Get real client IP, handling reverse proxy"""
    forwarded_for = request.headers.get('X-Forwarded-For')
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(',')[0].strip()
    return request.remote_addr


def get_rate_limit_key():
    """Get rate limit key - use operator ID if authenticated, otherwise IP"""
    if current_user and current_user.is_authenticated:
        return f"operator:{current_user.id}"
    return get_real_ip()


# Configure Redis storage for rate limiting (shared across workers)
redis_url = os.getenv('REDIS_URL', 'redis://localhost:6379/1')
app.config['RATELIMIT_ENABLED'] = os.getenv('RATELIMIT_ENABLED', 'true').lower() == 'true'

limiter = Limiter(
    key_func=get_rate_limit_key,
    app=app,
    storage_uri=os.getenv('RATELIMIT_STORAGE_URI', redis_url),
    storage_options={"socket_connect_timeout": 5},
    default_limits=["5000 per day", "1000 per hour"],  # Public status page is polled
    strategy="fixed-window",
)


@app.errorhandler(429)
def ratelimit_handler(e):
    """Handle rate limit exceeded"""
    security_logger.warning(
        f"Rate limit exceeded: IP={request.remote_addr} "
        f"endpoint={request.endpoint} "
        f"user_agent={request.user_agent.string[:100]}"
    )
    # Return JSON for API endpoints or JSON requests
    if request.is_json or request.path.startswith('/api/'):
        return jsonify({
            'error': 'Rate limit exceeded',
            'message': 'Too many requests. Please try again later.',
            'retry_after': e.description
        }), 429
    flash('Too many requests. Please slow down and try again.', 'error')
    return redirect(request.referrer or url_for('status.index')), 429


# =============================================================================
# Request Logging for Security Forensics
# =============================================================================

# Session idle timeout (30 minutes)
SESSION_IDLE_TIMEOUT = int(os.getenv('SESSION_IDLE_TIMEOUT', '1800'))


@app.before_request
def check_session_timeout():
    """Check for session idle timeout and enforce re-authentication"""
    # Skip for static files, probes and the event stream
    if request.endpoint in ['static', 'health_check', 'readiness_check', 'status.api_stream', None]:
        return

    if current_user.is_authenticated:
        last_activity = session.get('last_activity')
        if last_activity:
            idle_time = time.time() - last_activity
            if idle_time > SESSION_IDLE_TIMEOUT:
                security_logger.info(
                    f"SESSION_TIMEOUT: operator={current_user.id} email={current_user.email} "
                    f"idle_time={idle_time:.0f}s IP={request.remote_addr}"
                )
                logout_user()
                session.clear()
                flash('Your session has expired due to inactivity. Please log in again.', 'info')
                return redirect(url_for('login'))
        session['last_activity'] = time.time()


@app.before_request
def log_request_info():
    """Log requests to authentication endpoints for security forensics"""
    g.request_start_time = time.time()

    if request.endpoint in ['login', 'register']:
        security_logger.info(
            f"REQUEST: {request.method} {request.path} "
            f"IP={request.remote_addr} "
            f"user_agent={request.user_agent.string[:100]} "
            f"referrer={request.referrer or '-'}"
        )


@app.after_request
def log_response_info(response):
    """Log response information for failed requests"""
    if hasattr(g, 'request_start_time'):
        elapsed = time.time() - g.request_start_time

        if response.status_code in [401, 403] or (
            request.endpoint in ['login', 'register'] and response.status_code >= 400
        ):
            security_logger.warning(
                f"FAILED REQUEST: {request.method} {request.path} "
                f"status={response.status_code} "
                f"IP={request.remote_addr} "
                f"elapsed={elapsed:.3f}s"
            )

    return response


# =============================================================================
# Initialize Extensions
# =============================================================================

csrf = CSRFProtect(app)
login_manager = LoginManager(app)
login_manager.login_view = 'login'
login_manager.login_message_category = 'info'

# Initialize database pool
if os.getenv('DB_PASSWORD'):
    init_db_pool()
else:
    logger.warning("DB_PASSWORD not set - database calls will fail until it is configured")

# Register public status page
from status import status_bp
app.register_blueprint(status_bp)

# Register operator dashboard
from dashboard import dashboard_bp
app.register_blueprint(dashboard_bp)

# Register metrics blueprint for Prometheus
from metrics import metrics_bp
app.register_blueprint(metrics_bp)

# Long-lived streams and probes are not rate limited
limiter.exempt(app.view_functions['status.api_stream'])
limiter.exempt(app.view_functions['metrics.prometheus_metrics'])


@login_manager.user_loader
def load_user(user_id):
    """Load operator for Flask-Login"""
    try:
        return Operator.get_by_id(int(user_id))
    except Exception as e:
        # Treated as signed out until the database is reachable again
        logger.error(f"Failed to load operator {user_id}: {e}")
        return None


# =============================================================================
# Custom Validators
# =============================================================================

def validate_email_unique(form, field):
    """Check if email is already registered"""
    if Operator.email_exists(field.data.lower().strip()):
        raise ValidationError('This email is already registered')


# =============================================================================
# Forms
# =============================================================================

class RegisterForm(FlaskForm):
    """Operator registration form"""
    email = StringField('Email', validators=[
        DataRequired(),
        Email(),
        Length(max=255),
        validate_email_unique
    ])
    password = PasswordField('Password', validators=[
        DataRequired(),
        Length(min=8, message='Password must be at least 8 characters')
    ])
    confirm_password = PasswordField('Confirm Password', validators=[
        DataRequired(),
        EqualTo('password', message='Passwords must match')
    ])
    submit = SubmitField('Register')


class LoginForm(FlaskForm):
    """Operator login form"""
    email = StringField('Email', validators=[DataRequired(), Email()])
    password = PasswordField('Password', validators=[DataRequired()])
    submit = SubmitField('Login')


def _safe_next(target):
    """Only follow relative redirects"""
    if target and target.startswith('/') and not target.startswith('//'):
        return target
    return None


# =============================================================================
# Routes - Authentication
# =============================================================================

@app.route('/register', methods=['GET', 'POST'])
@limiter.limit("10 per hour", error_message="Too many registration attempts. Please try again later.")
def register():
    """Operator registration page"""
    if current_user.is_authenticated:
        return redirect(url_for('dashboard.index'))

    form = RegisterForm()

    try:
        valid = form.validate_on_submit()
    except Exception as e:
        logger.error(f"Registration lookup failed: {e}")
        flash('An error occurred. Please try again.', 'error')
        return render_template('register.html', form=form)

    if valid:
        try:
            operator = Operator(email=form.email.data.lower().strip())
            operator.set_password(form.password.data)
            operator.save()

            login_user(operator)
            security_logger.info(f"OPERATOR_REGISTERED: operator={operator.id} email={operator.email} "
                                 f"IP={request.remote_addr}")
            flash('Account created. Welcome!', 'success')
            return redirect(url_for('dashboard.index'))
        except Exception as e:
            logger.error(f"Registration error: {e}")
            flash('An error occurred. Please try again.', 'error')

    return render_template('register.html', form=form)


@app.route('/login', methods=['GET', 'POST'])
@limiter.limit("5 per minute", error_message="Too many login attempts. Please wait a minute.")
@limiter.limit("20 per hour", error_message="Too many login attempts. Please try again later.")
def login():
    """Operator login page"""
    if current_user.is_authenticated:
        return redirect(url_for('dashboard.index'))

    form = LoginForm()

    if form.validate_on_submit():
        email = form.email.data.lower().strip()
        try:
            operator = Operator.get_by_email(email)
        except Exception as e:
            logger.error(f"Login lookup failed: {e}")
            flash('Unable to sign in right now. Please try again.', 'error')
            return render_template('login.html', form=form)

        if operator and operator.check_password(form.password.data):
            login_user(operator)
            try:
                operator.update_last_login()
            except Exception as e:
                logger.error(f"Failed to record login for operator {operator.id}: {e}")
            security_logger.info(f"LOGIN_SUCCESS: operator={operator.id} email={operator.email} "
                                 f"IP={request.remote_addr}")

            next_page = _safe_next(request.args.get('next'))
            if next_page:
                return redirect(next_page)
            return redirect(url_for('dashboard.index'))
        else:
            security_logger.warning(
                f"LOGIN_FAILED: email={email} "
                f"IP={request.remote_addr} user_agent={request.user_agent.string[:50]}"
            )
            flash('Invalid email or password', 'error')

    return render_template('login.html', form=form)


@app.route('/logout')
@login_required
def logout():
    """Log out operator"""
    logger.info(f"Operator logout: {current_user.email}")
    logout_user()
    flash('You have been logged out.', 'info')
    return redirect(url_for('login'))


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.route('/health')
@limiter.exempt  # Health checks should not be rate limited
def health_check():
    """
    Health check endpoint for load balancers and monitoring.
    Returns 200 if the application can connect to its dependencies.
    """
    health_status = {
        'status': 'healthy',
        'timestamp': datetime.utcnow().isoformat() + 'Z',
        'checks': {}
    }
    overall_healthy = True

    # Check database connectivity
    try:
        conn = get_db_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT 1")
        cursor.fetchone()
        cursor.close()
        conn.close()
        health_status['checks']['database'] = {'status': 'healthy'}
    except Exception as e:
        health_status['checks']['database'] = {
            'status': 'unhealthy',
            'error': str(e)[:100]  # Truncate error message
        }
        overall_healthy = False

    # Check Redis connectivity (change feed)
    try:
        redis_client = redis.from_url(redis_url, socket_connect_timeout=2)
        redis_client.ping()
        health_status['checks']['redis'] = {'status': 'healthy'}
    except Exception as e:
        health_status['checks']['redis'] = {
            'status': 'unhealthy',
            'error': str(e)[:100]
        }
        overall_healthy = False

    if not overall_healthy:
        health_status['status'] = 'unhealthy'
        return jsonify(health_status), 503

    return jsonify(health_status), 200


@app.route('/ready')
@limiter.exempt  # Readiness checks should not be rate limited
def readiness_check():
    """
    Readiness probe for Kubernetes/orchestration.
    Indicates if the app is ready to receive traffic.
    """
    return jsonify({
        'status': 'ready',
        'timestamp': datetime.utcnow().isoformat() + 'Z'
    }), 200


# =============================================================================
# Error Handlers
# =============================================================================

@app.errorhandler(404)
def not_found_error(error):
    """Handle 404 errors"""
    if request.path.startswith('/api/'):
        return jsonify({'error': 'Not found'}), 404
    return render_template('errors/404.html'), 404


@app.errorhandler(500)
def internal_error(error):
    """Handle 500 errors"""
    logger.error(f"Internal server error: {error}")
    return render_template('errors/500.html'), 500


@app.errorhandler(CSRFError)
def handle_csrf_error(error):
    """Handle CSRF token errors gracefully"""
    flash('Your session has expired. Please try again.', 'info')
    referrer = request.referrer
    if referrer:
        return redirect(referrer)
    return redirect(url_for('status.index'))


# =============================================================================
# Template Context
# =============================================================================

@app.context_processor
def inject_now():
    """Inject current datetime and message timing into templates"""
    return {
        'now': datetime.now(),
        'flash_dismiss_ms': app.config['FLASH_DISMISS_SECONDS'] * 1000
    }


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5000, debug=os.getenv('FLASK_DEBUG', 'False').lower() == 'true')

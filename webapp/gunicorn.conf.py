"""
Gunicorn configuration file for the status page
All settings can be overridden via environment variables
"""

import os
import multiprocessing

# Server Socket
bind = os.getenv('GUNICORN_BIND', '127.0.0.1:5000')

# Worker Processes
# Default: CPU cores + 1; each worker also runs several threads
default_workers = multiprocessing.cpu_count() + 1
workers = int(os.getenv('GUNICORN_WORKERS', default_workers))

# /api/stream holds a connection open per browser, so threads are required
worker_class = os.getenv('GUNICORN_WORKER_CLASS', 'gthread')
threads = int(os.getenv('GUNICORN_THREADS', '16'))

# Timeout for worker processes (seconds)
# Must exceed STREAM_POLL_SECONDS so keepalives reach idle streams
timeout = int(os.getenv('GUNICORN_TIMEOUT', '60'))

# Graceful timeout (seconds to finish requests during shutdown)
graceful_timeout = int(os.getenv('GUNICORN_GRACEFUL_TIMEOUT', '30'))

# Keep-alive connections timeout
keepalive = int(os.getenv('GUNICORN_KEEPALIVE', '5'))

# Maximum requests per worker before restart (helps prevent memory leaks)
max_requests = int(os.getenv('GUNICORN_MAX_REQUESTS', '1000'))
max_requests_jitter = int(os.getenv('GUNICORN_MAX_REQUESTS_JITTER', '50'))

# Preload application code before forking workers
preload_app = os.getenv('GUNICORN_PRELOAD', 'false').lower() == 'true'

# Logging
accesslog = os.getenv('GUNICORN_ACCESS_LOG', '-')  # '-' means stdout
errorlog = os.getenv('GUNICORN_ERROR_LOG', '-')
loglevel = os.getenv('GUNICORN_LOG_LEVEL', 'info')

# Access log format (combined format similar to nginx)
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

proc_name = 'statuspage-webapp'


def post_fork(server, worker):
    """Workers must not share the parent's database pool or Redis client"""
    import models
    models.db_pool = None
    import realtime
    realtime._redis_client = None

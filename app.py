# app.py
"""
Flask application factory for the notes background-job service

The web process exposes the job trigger endpoints and the job-status
inspection API. Handlers run on Celery workers (see tasks.worker):
- Redis holds the job-status records and backs the Celery broker
- Celery beat fires the scheduled image cleanup and task reminder jobs
- JSON error handling, rate limiting and structured logging for every route
"""

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Optional

import redis
from flask import Flask, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from api.jobs import jobs_bp, limiter
from config.settings import get_config
from core.backend_client import BackendClient
from core.status_store import JobStatusStore
from middleware.security import security_headers
from tasks.worker import celery_app, configure_jobs
import tasks.jobs  # noqa: F401  registers the topic handlers


def setup_logging(app: Flask) -> None:
    """
    Configure logging for the web process

    - journald-friendly single-line format on stderr
    - optional rotating log file (LOG_FILE)
    - quieter third-party loggers outside debug mode
    """
    # Remove default Flask handlers to avoid duplicate logs
    app.logger.handlers.clear()

    journal_formatter = logging.Formatter(
        fmt='%(name)s[%(process)d]: %(levelname)s %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s %(name)-20s %(levelname)-8s %(funcName)-15s:%(lineno)-4d %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    log_level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO').upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Repeated create_app() calls (tests) must not stack handlers
    for handler in list(root_logger.handlers):
        if getattr(handler, '_notes_jobs_handler', False):
            root_logger.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(journal_formatter)
    stream_handler.setLevel(log_level)
    stream_handler._notes_jobs_handler = True
    root_logger.addHandler(stream_handler)

    log_file = app.config.get('LOG_FILE')
    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(detailed_formatter)
        file_handler.setLevel(logging.DEBUG)
        file_handler._notes_jobs_handler = True
        root_logger.addHandler(file_handler)

    app.logger.setLevel(log_level)

    if not app.debug:
        logging.getLogger('werkzeug').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.WARNING)


def create_redis_client(app: Flask) -> redis.Redis:
    """Redis client for the job-status store"""
    client = redis.Redis.from_url(
        app.config['REDIS_URL'],
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
        health_check_interval=30,
    )

    try:
        client.ping()
        app.logger.info("Redis job-status client connected successfully")
    except redis.ConnectionError as e:
        app.logger.error(f"Redis connection failed: {e}")
        if app.config.get('REDIS_REQUIRED', True):
            raise

    return client


def configure_security(app: Flask) -> None:
    """Rate limiting and CORS"""
    limiter.init_app(app)

    CORS(app,
         origins=app.config.get('CORS_ORIGINS', []),
         supports_credentials=True,
         allow_headers=['Content-Type', 'X-Job-Token'])

    app.logger.info("Security features configured")


def register_blueprints(app: Flask) -> None:
    app.register_blueprint(jobs_bp)
    app.logger.info("Application blueprints registered")


def configure_error_handlers(app: Flask) -> None:
    """JSON bodies for every error the API can produce"""
    @app.errorhandler(400)
    def bad_request(error):
        app.logger.warning(f"Bad request from {request.remote_addr}: {error}")
        return jsonify({'error': 'Invalid request data'}), 400

    @app.errorhandler(401)
    def unauthorized(error):
        app.logger.warning(f"Unauthorized access attempt from {request.remote_addr}")
        return jsonify({'error': 'Authentication required'}), 401

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'The requested resource was not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(413)
    def payload_too_large(error):
        app.logger.warning(f"Oversized request from {request.remote_addr} to {request.path}")
        return jsonify({'error': 'Request body too large'}), 413

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        app.logger.warning(f"Rate limit exceeded for {request.remote_addr}")
        return jsonify({
            'error': 'Too many requests. Please try again later.',
            'retry_after': error.retry_after if hasattr(error, 'retry_after') else 60
        }), 429

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f"Internal server error: {error}", exc_info=True)
        return jsonify({'error': 'An unexpected error occurred'}), 500

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return e

        app.logger.error(f"Unhandled exception: {e}", exc_info=True)
        return jsonify({'error': 'An unexpected error occurred'}), 500


def configure_health_checks(app: Flask, status_store: JobStatusStore) -> None:
    @app.route('/health')
    @limiter.exempt
    def health_check():
        """Basic health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'service': app.config['SERVICE_NAME'],
        })

    @app.route('/health/detailed')
    @limiter.exempt
    def detailed_health_check():
        """Health check with Redis and Celery worker status"""
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'service': app.config['SERVICE_NAME'],
            'version': app.config['VERSION'],
            'components': {}
        }

        try:
            status_store.ping()
            health_status['components']['redis'] = 'healthy'
        except redis.RedisError as e:
            health_status['components']['redis'] = f'unhealthy: {str(e)}'
            health_status['status'] = 'unhealthy'

        try:
            active_workers = celery_app.control.inspect(timeout=1.0).ping()
            if active_workers:
                health_status['components']['celery_workers'] = f'healthy ({len(active_workers)} workers)'
            else:
                health_status['components']['celery_workers'] = 'no workers available'
                if health_status['status'] == 'healthy':
                    health_status['status'] = 'degraded'
        except Exception as e:
            health_status['components']['celery_workers'] = f'unhealthy: {str(e)}'
            health_status['status'] = 'unhealthy'

        status_code = 200 if health_status['status'] == 'healthy' else 503
        return jsonify(health_status), status_code


def configure_request_middleware(app: Flask) -> None:
    @app.before_request
    def before_request():
        g.start_time = datetime.now(timezone.utc)

    @app.after_request
    def after_request(response):
        response = security_headers(response)

        if hasattr(g, 'start_time'):
            duration = (datetime.now(timezone.utc) - g.start_time).total_seconds() * 1000
            if duration > app.config.get('SLOW_REQUEST_THRESHOLD', 1000):
                app.logger.warning(f"Slow request ({duration:.0f}ms): {request.method} {request.path}")

        return response


def create_app(config_name: str = None, redis_client: Optional[redis.Redis] = None,
               backend_client: Optional[BackendClient] = None) -> Flask:
    """
    Flask application factory

    Args:
        config_name: 'development', 'testing' or 'production' (default: FLASK_ENV)
        redis_client: client for the job-status store instead of one built from REDIS_URL
        backend_client: backend HTTP client for eagerly executed jobs

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    config_name = config_name or os.environ.get('FLASK_ENV', 'production')
    app.config.from_object(get_config(config_name))

    if app.config.get('PROXY_FIX'):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    setup_logging(app)
    app.logger.info(f"Starting notes job service in {config_name} mode")

    if redis_client is None:
        redis_client = create_redis_client(app)
    status_store = JobStatusStore(
        redis_client,
        prefix=app.config['JOB_STATUS_PREFIX'],
        ttl_seconds=app.config['JOB_STATUS_TTL_SECONDS'],
    )
    app.status_store = status_store

    app.celery = configure_jobs(app.config, status_store=status_store, backend_client=backend_client)
    app.logger.info(f"Celery configured with broker {app.config['CELERY_BROKER_URL'].split('@')[-1]}")

    configure_security(app)
    register_blueprints(app)
    configure_error_handlers(app)
    configure_health_checks(app, status_store)
    configure_request_middleware(app)

    app.logger.info("Flask application factory completed successfully")
    return app


if __name__ == '__main__':
    # Development server
    app = create_app('development')
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)), debug=True)

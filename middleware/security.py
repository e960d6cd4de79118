# middleware/security.py
"""
Security middleware for the job trigger API
"""

import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)


def security_headers(response):
    """Add security headers to all responses"""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
    response.headers['Referrer-Policy'] = 'no-referrer'
    response.headers['Cache-Control'] = 'no-store'

    return response


def require_job_token(f):
    """Require the X-Job-Token header when JOB_TRIGGER_TOKEN is configured"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('JOB_TRIGGER_TOKEN')
        if expected:
            provided = request.headers.get('X-Job-Token', '')
            if not hmac.compare_digest(provided.encode('utf-8'), expected.encode('utf-8')):
                logger.warning(f"Rejected job trigger {request.endpoint} from {request.remote_addr}: bad token")
                return jsonify({'error': 'Authentication required'}), 401

        return f(*args, **kwargs)
    return decorated_function

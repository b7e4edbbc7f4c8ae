# -*- coding: utf-8 -*-

import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from parkpay import __version__
from parkpay.infra.db import db

health_bp = Blueprint('health', __name__)


@health_bp.route('/health', methods=['GET', 'HEAD'])
@health_bp.route('/healthz', methods=['GET', 'HEAD'])
def healthz():
    """Liveness check endpoint (available at both /health and /healthz)."""
    return jsonify({
        'status': 'healthy',
        'service': 'parkpay',
        'version': __version__,
        'timestamp': time.time()
    }), 200


@health_bp.route('/readyz', methods=['GET', 'HEAD'])
def readyz():
    """Readiness check: database reachable and Stripe configured."""
    checks = {
        'database': True,
        'stripe': bool(current_app.config.get('STRIPE_SECRET_KEY')),
        'webhook_secret': bool(current_app.config.get('STRIPE_WEBHOOK_SECRET')),
    }
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError:
        checks['database'] = False

    ready = all(checks.values())
    return jsonify({
        'status': 'ready' if ready else 'not_ready',
        'service': 'parkpay',
        'timestamp': time.time(),
        'checks': checks
    }), 200 if ready else 503

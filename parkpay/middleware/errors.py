"""
Error handling middleware.
Renders service exceptions and database failures as {"error": message}.
"""
import stripe
from flask import jsonify
from sqlalchemy.exc import IntegrityError, OperationalError

from parkpay.errors import PaymentError
from parkpay.infra.log import get_logger

logger = get_logger('parkpay.errors')


def register_error_handlers(app):
    """Register error handlers for the payment endpoints"""

    @app.errorhandler(PaymentError)
    def handle_payment_error(e):
        if e.status_code >= 500:
            logger.error(f"{e.__class__.__name__}: {e.message}")
        return jsonify({'error': e.message}), e.status_code

    @app.errorhandler(stripe.StripeError)
    def handle_stripe_error(e):
        """Stripe errors that escaped a service; details stay in the log"""
        logger.error(f"Unhandled Stripe error: {e}", stripe_error=e.__class__.__name__)
        return jsonify({'error': 'Payment provider error'}), 500

    @app.errorhandler(OperationalError)
    def handle_operational_error(e):
        """Handle database operational errors (connection, missing table)"""
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)
        logger.error(f"Database operational error: {error_msg}")
        return jsonify({'error': 'Database operation failed. Please try again later.'}), 503

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        """Handle database integrity errors (foreign key, unique constraint)"""
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)
        logger.error(f"Database integrity error: {error_msg}")

        if 'foreign key' in error_msg.lower():
            return jsonify({'error': 'Referenced entity does not exist'}), 400

        if 'unique' in error_msg.lower() or 'duplicate' in error_msg.lower():
            return jsonify({'error': 'This entry already exists'}), 409

        return jsonify({'error': 'Data integrity constraint violated'}), 400

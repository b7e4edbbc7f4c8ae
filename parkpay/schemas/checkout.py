# -*- coding: utf-8 -*-
"""Request schemas for the checkout endpoints."""

from urllib.parse import urlparse

from marshmallow import (
    EXCLUDE, Schema, ValidationError, fields, pre_load, validate, validates,
    validates_schema,
)

MODES = ('payment', 'subscription')
PAYMENT_METHODS = ('card', 'konbini', 'bank_transfer')
MISSING = {'required': 'Missing required parameters'}


def _is_absolute_http_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


class SubscriptionTermsSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(load_default='Subscription')
    unit_price = fields.Int(required=True, validate=validate.Range(min=1))
    interval_months = fields.Int(load_default=1, validate=validate.Range(min=1, max=12))
    product_id = fields.Str(load_default=None, allow_none=True)
    option_id = fields.Str(load_default=None, allow_none=True)

    @pre_load
    def interval_alias(self, data, **kwargs):
        if isinstance(data, dict) and 'interval_months' not in data and 'interval' in data:
            data = dict(data)
            data['interval_months'] = data['interval']
        return data


class CheckoutRequestSchema(Schema):
    """Body of POST /checkout."""

    class Meta:
        unknown = EXCLUDE

    mode = fields.Str(required=True, error_messages=MISSING)
    success_url = fields.Str(required=True, error_messages=MISSING)
    cancel_url = fields.Str(required=True, error_messages=MISSING)

    price_id = fields.Str(load_default=None, allow_none=True)
    custom_amount = fields.Int(load_default=None, allow_none=True)
    custom_name = fields.Str(load_default=None, allow_none=True)
    cart_items = fields.List(fields.Raw(), load_default=None, allow_none=True)
    reservation_data = fields.Raw(load_default=None, allow_none=True)
    subscription = fields.Nested(SubscriptionTermsSchema, load_default=None, allow_none=True)

    points_use = fields.Int(load_default=0, allow_none=True, validate=validate.Range(min=0))
    payment_method = fields.Str(load_default='card', allow_none=True,
                                validate=validate.OneOf(PAYMENT_METHODS))
    trial_period_days = fields.Int(load_default=None, allow_none=True,
                                   validate=validate.Range(min=0, max=730))
    notes = fields.Str(load_default=None, allow_none=True)
    metadata = fields.Dict(keys=fields.Str(), load_default=dict)

    @pre_load
    def normalize_mode(self, data, **kwargs):
        if isinstance(data, dict) and data.get('mode') == 'one_time':
            data = dict(data)
            data['mode'] = 'payment'
        return data

    @validates('mode')
    def validate_mode(self, value, **kwargs):
        if value not in MODES:
            raise ValidationError('Invalid mode. Must be "payment" or "subscription"')

    @validates('success_url')
    def validate_success_url(self, value, **kwargs):
        if not _is_absolute_http_url(value):
            raise ValidationError('Invalid success_url')

    @validates('cancel_url')
    def validate_cancel_url(self, value, **kwargs):
        if not _is_absolute_http_url(value):
            raise ValidationError('Invalid cancel_url')

    @validates_schema
    def validate_purchase_shape(self, data, **kwargs):
        if data.get('mode') == 'subscription':
            if data.get('payment_method') not in (None, 'card'):
                raise ValidationError('Subscriptions can only be paid by card', 'payment_method')
            if not data.get('price_id') and not data.get('subscription'):
                raise ValidationError(
                    'price_id or subscription details are required for subscription',
                    'subscription',
                )
            return

        shapes = [
            data.get('custom_amount') is not None,
            bool(data.get('cart_items')),
            data.get('reservation_data') is not None,
        ]
        if sum(shapes) > 1:
            raise ValidationError(
                'Provide only one of custom_amount, cart_items or reservation_data'
            )
        if data.get('custom_amount') is not None and not data.get('custom_name'):
            raise ValidationError('custom_name is required with custom_amount', 'custom_name')


class SessionDetailsRequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    session_id = fields.Str(required=True, validate=validate.Length(min=1))


class SubscriptionChangeRequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    subscription_id = fields.Str(load_default=None, allow_none=True)


def first_error_message(messages) -> str:
    """Flatten marshmallow's error dict into a single caller-facing message."""
    if isinstance(messages, dict):
        for key in ('_schema',) + tuple(k for k in messages if k != '_schema'):
            if key in messages:
                return first_error_message(messages[key])
    if isinstance(messages, (list, tuple)) and messages:
        return first_error_message(messages[0])
    return str(messages)

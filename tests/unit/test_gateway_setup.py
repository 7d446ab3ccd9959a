"""
Tests for payment gateway registration on the Flask app.
"""

import pytest
from flask import Flask

from storefront.exceptions import ExternalServiceError
from storefront.services.payment_service import (
    EXTENSION_KEY, get_payment_gateway, init_payment_gateway,
)
from storefront.services.razorpay_client import RazorpayClient


def make_app(**config):
    app = Flask(__name__)
    app.config.update(config)
    return app


class TestGatewaySetup:
    """Tests for init_payment_gateway and get_payment_gateway."""

    def test_configured_credentials(self):
        app = make_app(RAZORPAY_KEY_ID='rzp_test_key', RAZORPAY_KEY_SECRET='secret', RAZORPAY_TIMEOUT=5)

        init_payment_gateway(app)

        client = app.extensions[EXTENSION_KEY]
        assert isinstance(client, RazorpayClient)
        assert client.timeout == 5
        with app.app_context():
            assert get_payment_gateway() is client

    def test_missing_credentials_disable_payments(self):
        app = make_app(RAZORPAY_KEY_ID='rzp_test_key', RAZORPAY_KEY_SECRET=None)

        init_payment_gateway(app)

        assert app.extensions[EXTENSION_KEY] is None
        with app.app_context():
            with pytest.raises(ExternalServiceError) as exc:
                get_payment_gateway()
        assert exc.value.message == 'Payment service not configured'

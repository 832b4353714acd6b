# tests/conftest.py
"""
Shared fixtures: settings built without touching the environment or .env,
and a facilitator double whose verify/settle are AsyncMocks.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from paygate.core.config import load_settings
from paygate.main import create_app
from paygate.payment.descriptor import build_descriptor
from paygate.payment.facilitator import FacilitatorResult

PAY_TO = "0x1234567890abcdef1234567890abcdef12345678"

BASE_SETTINGS = {
    "PAY_TO_ADDRESS": PAY_TO,
    "PRICE": "0.0001 ETH",
    "NETWORK": "eip155:11155111|ETH",
    "FACILITATOR_URL": "https://facilitator.example.com",
    "FACILITATOR_SECRET_KEY": "test-secret-key",
    "PUBLIC_BASE_URL": "http://localhost:3002",
    "PAYMENT_UI_URL": "http://localhost:3002/wallet.html",
    "CLIENT_ID": "public-client-id",
    "AUDIT_LOG_ENABLED": False,
}


def make_settings(**overrides):
    """Build Settings from BASE_SETTINGS, ignoring any local .env file."""
    values = dict(BASE_SETTINGS)
    values.update(overrides)
    return load_settings(_env_file=None, **values)


def make_facilitator(
    settle: FacilitatorResult = None,
    verify: FacilitatorResult = None
) -> MagicMock:
    """Facilitator double. Defaults to rejecting every request with 402."""
    facilitator = MagicMock()
    facilitator.settle = AsyncMock(
        return_value=settle or FacilitatorResult(status=402, body={"error": "Payment proof is required"})
    )
    facilitator.verify = AsyncMock(
        return_value=verify or FacilitatorResult(status=200, body={"payer": "0xpayer"})
    )
    return facilitator


def granted_result(receipt: str = "rcpt-123", payer: str = "0xpayer") -> FacilitatorResult:
    return FacilitatorResult(
        status=200,
        headers={"X-Payment-Receipt": receipt},
        body={"payer": payer},
    )


def make_client(facilitator, **overrides) -> TestClient:
    """TestClient for a fully wired application."""
    app = create_app(make_settings(**overrides), facilitator=facilitator)
    return TestClient(app)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def descriptor():
    """The descriptor used in the end-to-end weather scenario."""
    return build_descriptor(
        pay_to="0xABC",
        price="0.001",
        network="test-net|USD",
        resource_path="/weather",
    )

# paygate/payment/facilitator.py
"""
Facilitator backends.

The facilitator is the external service that verifies and settles payment
proofs. The gate only sees the two-operation contract below; everything
about signatures and settlement lives on the other side of it.

Backends (selected with FACILITATOR_BACKEND):
- http: generic facilitator reached over HTTP with a secret key
- x402: the x402 SDK FacilitatorClient (e.g. https://x402.org/facilitator)
- mock: accepts any non-empty proof, for local development only
"""
import hashlib
import json
import logging
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from x402.types import PaymentPayload, PaymentRequirements, SettleResponse
from x402.facilitator import FacilitatorClient
from x402.encoding import safe_base64_decode, safe_base64_encode

from paygate.core.config import ConfigurationError, Settings
from paygate.payment.descriptor import CHALLENGE_DELIMITER, PaymentDescriptor
from paygate.services import facilitator_api

logger = logging.getLogger(__name__)

X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"
X_PAYMENT_RECEIPT_HEADER = "X-Payment-Receipt"


class FacilitatorUnavailable(Exception):
    """The facilitator could not be reached or did not answer in time."""


class FacilitatorRequest(BaseModel):
    """What the gate hands to the facilitator for one request."""
    descriptor: PaymentDescriptor
    method: str
    proof: Optional[str] = None

    class Config:
        frozen = True


class FacilitatorResult(BaseModel):
    """Outcome of a verify/settle call: {status, headers, body}."""
    status: int
    headers: Dict[str, str] = {}
    body: Any = None

    @property
    def ok(self) -> bool:
        return self.status == 200

    @property
    def reason(self) -> Optional[str]:
        """Error text reported by the facilitator, for server-side logs."""
        if isinstance(self.body, dict):
            for key in ("error", "errorMessage", "invalidReason", "errorReason", "message"):
                if self.body.get(key):
                    return str(self.body[key])
        elif isinstance(self.body, str) and self.body:
            return self.body
        return None


class Facilitator(Protocol):
    async def verify(self, request: FacilitatorRequest) -> FacilitatorResult:
        ...

    async def settle(self, request: FacilitatorRequest) -> FacilitatorResult:
        ...


def payment_required_result(reason: str = "Payment proof is required") -> FacilitatorResult:
    """Result used when no proof was submitted; no network call is made."""
    return FacilitatorResult(status=402, body={"error": reason})


class HttpFacilitator:
    """
    Facilitator reached over HTTP.

    The blocking requests call runs in the threadpool so the event loop
    keeps serving other requests while settlement is pending.
    """

    def __init__(self, base_url: str, secret_key: str, timeout_seconds: float = 300.0):
        self.base_url = base_url
        self._secret_key = secret_key
        self.timeout_seconds = timeout_seconds

    async def verify(self, request: FacilitatorRequest) -> FacilitatorResult:
        return await self._call(facilitator_api.verify_payment, request)

    async def settle(self, request: FacilitatorRequest) -> FacilitatorResult:
        return await self._call(facilitator_api.settle_payment, request)

    async def _call(self, operation, request: FacilitatorRequest) -> FacilitatorResult:
        if not request.proof:
            return payment_required_result()

        payload = request.descriptor.to_facilitator_payload(request.method, request.proof)
        try:
            status, headers, body = await run_in_threadpool(
                operation, self.base_url, payload, self._secret_key, self.timeout_seconds
            )
        except Exception as e:
            raise FacilitatorUnavailable(str(e)) from e

        return FacilitatorResult(status=status, headers=headers, body=body)


def decode_payment_header(header_value: str) -> Optional[PaymentPayload]:
    """
    Decode an X-PAYMENT header into an x402 PaymentPayload.

    Returns:
        PaymentPayload if successfully decoded, None otherwise
    """
    try:
        # safe_base64_decode returns str, not bytes
        decoded_str = safe_base64_decode(header_value)
        if not decoded_str:
            logger.warning("Failed to decode X-PAYMENT header: invalid base64")
            return None
        return PaymentPayload.model_validate(json.loads(decoded_str))
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse X-PAYMENT header JSON: {e}")
        return None
    except Exception as e:
        logger.warning(f"Failed to decode X-PAYMENT header: {e}")
        return None


def encode_payment_response(settle_response: SettleResponse) -> str:
    """Encode a settlement response for the X-PAYMENT-RESPONSE header."""
    response_json = json.dumps(settle_response.model_dump(by_alias=True))
    return safe_base64_encode(response_json.encode("utf-8"))


class X402Facilitator:
    """Facilitator backed by the x402 SDK FacilitatorClient."""

    def __init__(
        self,
        facilitator_url: str,
        client: Optional[FacilitatorClient] = None,
        description: str = "Access to premium weather data",
        max_timeout_seconds: int = 300
    ):
        self.facilitator_url = facilitator_url
        self._client = client
        self.description = description
        self.max_timeout_seconds = max_timeout_seconds

    @property
    def client(self) -> FacilitatorClient:
        """Lazy initialization of facilitator client."""
        if self._client is None:
            self._client = FacilitatorClient({"url": self.facilitator_url})
        return self._client

    def payment_requirements(self, descriptor: PaymentDescriptor) -> PaymentRequirements:
        """
        Derive x402 PaymentRequirements from the descriptor.

        The x402 network is the chain part of the descriptor network
        ("base-sepolia|USDC" -> "base-sepolia"); the amount must already be
        in the asset's atomic units.

        Raises:
            ConfigurationError: If the descriptor cannot be expressed in x402 terms
        """
        if descriptor.price.asset is None:
            raise ConfigurationError("x402 facilitator requires PRICE_ASSET_ADDRESS and PRICE_ASSET_DECIMALS")

        try:
            return PaymentRequirements(
                scheme="exact",
                network=descriptor.network.split(CHALLENGE_DELIMITER)[0],
                max_amount_required=descriptor.price.amount,
                resource=descriptor.resource_url,
                description=self.description,
                mime_type="application/json",
                pay_to=descriptor.pay_to,
                max_timeout_seconds=self.max_timeout_seconds,
                asset=descriptor.price.asset.address,
                extra=None
            )
        except ValidationError as e:
            raise ConfigurationError(f"Descriptor is not valid x402 payment requirements: {e}") from e

    async def verify(self, request: FacilitatorRequest) -> FacilitatorResult:
        if not request.proof:
            return payment_required_result()

        payment = decode_payment_header(request.proof)
        if payment is None:
            return FacilitatorResult(status=402, body={"error": "Invalid X-PAYMENT header format"})

        try:
            verify_response = await self.client.verify(
                payment, self.payment_requirements(request.descriptor)
            )
        except ConfigurationError:
            raise
        except Exception as e:
            raise FacilitatorUnavailable(str(e)) from e

        if not verify_response.is_valid:
            return FacilitatorResult(
                status=402,
                body={"error": verify_response.invalid_reason or "Unknown reason"}
            )
        return FacilitatorResult(status=200, body={"payer": verify_response.payer})

    async def settle(self, request: FacilitatorRequest) -> FacilitatorResult:
        if not request.proof:
            return payment_required_result()

        payment = decode_payment_header(request.proof)
        if payment is None:
            return FacilitatorResult(status=402, body={"error": "Invalid X-PAYMENT header format"})

        try:
            settle_response = await self.client.settle(
                payment, self.payment_requirements(request.descriptor)
            )
        except ConfigurationError:
            raise
        except Exception as e:
            raise FacilitatorUnavailable(str(e)) from e

        if not settle_response.success:
            return FacilitatorResult(
                status=402,
                body={"error": settle_response.error_reason or "Settlement failed"}
            )

        return FacilitatorResult(
            status=200,
            headers={X_PAYMENT_RESPONSE_HEADER: encode_payment_response(settle_response)},
            body={
                "payer": settle_response.payer,
                "transaction": settle_response.transaction,
            },
        )


class MockFacilitator:
    """Accepts any non-empty proof. Never use outside local development."""

    async def verify(self, request: FacilitatorRequest) -> FacilitatorResult:
        if not request.proof:
            return payment_required_result()
        return FacilitatorResult(status=200, body={"payer": None})

    async def settle(self, request: FacilitatorRequest) -> FacilitatorResult:
        if not request.proof:
            return payment_required_result()
        digest = hashlib.sha256(request.proof.encode("utf-8")).hexdigest()[:16]
        return FacilitatorResult(
            status=200,
            headers={X_PAYMENT_RECEIPT_HEADER: f"mock-{digest}"},
            body={"payer": None},
        )


def build_facilitator(settings: Settings, descriptor: PaymentDescriptor) -> Facilitator:
    """
    Construct the facilitator backend selected by FACILITATOR_BACKEND.

    Raises:
        ConfigurationError: If the backend cannot serve this descriptor
    """
    backend = settings.FACILITATOR_BACKEND
    facilitator_url = str(settings.FACILITATOR_URL)

    if backend == "x402":
        facilitator = X402Facilitator(
            facilitator_url=facilitator_url,
            max_timeout_seconds=int(settings.FACILITATOR_TIMEOUT_SECONDS),
        )
        # Fail at startup rather than on the first paid request
        facilitator.payment_requirements(descriptor)
        logger.info(f"Using x402 facilitator at {facilitator_url}")
        return facilitator

    if backend == "mock":
        logger.warning("Using mock facilitator: every non-empty payment proof is accepted")
        return MockFacilitator()

    logger.info(f"Using HTTP facilitator at {facilitator_url}")
    return HttpFacilitator(
        base_url=facilitator_url,
        secret_key=settings.FACILITATOR_SECRET_KEY,
        timeout_seconds=settings.FACILITATOR_TIMEOUT_SECONDS,
    )

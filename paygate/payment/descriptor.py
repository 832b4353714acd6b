# paygate/payment/descriptor.py
"""
Payment descriptor: the canonical description of a protected resource's
payment terms.

The descriptor is built once at startup and used, unchanged, both for the
challenge message sent to clients and for every facilitator call. Clients
sign the challenge; the facilitator checks the signature against the same
fields, so any divergence between the two makes valid proofs fail.
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlencode, urlsplit

from pydantic import BaseModel

from paygate.core.config import ConfigurationError, Settings

logger = logging.getLogger(__name__)

# Challenge format: resourceURL|network|payToAddress|price
CHALLENGE_DELIMITER = "|"
CUSTOMER_ID_PARAM = "customerId"
DEFAULT_RESOURCE_PATH = "/api/weather"


class PriceAsset(BaseModel):
    """Token contract the price is denominated in (amount is then in atomic units)."""
    address: str
    decimals: int

    class Config:
        frozen = True


class Price(BaseModel):
    amount: str
    asset: Optional[PriceAsset] = None

    class Config:
        frozen = True


class PaymentDescriptor(BaseModel):
    """
    Payment terms of a single protected resource.

    Immutable: the same instance is shared by every request.
    """
    resource_url: str
    method: str = "GET"
    pay_to: str
    network: str
    price: Price

    class Config:
        frozen = True

    @property
    def customer_id(self) -> Optional[str]:
        """Customer identifier embedded in the resource URL, if any."""
        query = parse_qs(urlsplit(self.resource_url).query)
        values = query.get(CUSTOMER_ID_PARAM)
        return values[0] if values else None

    def to_facilitator_payload(self, method: str, proof: Optional[str]) -> Dict[str, Any]:
        """
        Serialize the descriptor into the request body sent to a facilitator.

        Args:
            method: HTTP method of the incoming request
            proof: Opaque payment proof submitted by the client, if any

        Returns:
            Dict ready to be sent as JSON
        """
        price: Any = self.price.amount
        if self.price.asset is not None:
            price = {
                "amount": self.price.amount,
                "asset": {
                    "address": self.price.asset.address,
                    "decimals": self.price.asset.decimals,
                },
            }
        return {
            "resourceUrl": self.resource_url,
            "method": method,
            "payTo": self.pay_to,
            "network": self.network,
            "price": price,
            "paymentData": proof,
        }


def build_resource_url(
    resource_path: str,
    base_url: Optional[str] = None,
    customer_id: Optional[str] = None
) -> str:
    """
    Build the resource URL that is signed by clients.

    A customer identifier, when given, is appended as a query parameter so
    that a payment proof is bound to that customer.
    """
    if not resource_path.startswith("/"):
        resource_path = f"/{resource_path}"

    url = f"{base_url.rstrip('/')}{resource_path}" if base_url else resource_path

    if customer_id:
        url = f"{url}?{urlencode({CUSTOMER_ID_PARAM: customer_id})}"

    return url


def build_descriptor(
    pay_to: Optional[str],
    price: Optional[str],
    network: Optional[str],
    resource_path: Optional[str],
    base_url: Optional[str] = None,
    customer_id: Optional[str] = None,
    method: str = "GET",
    asset_address: Optional[str] = None,
    asset_decimals: Optional[int] = None
) -> PaymentDescriptor:
    """
    Build the canonical PaymentDescriptor from static configuration.

    Pure and deterministic: the same arguments always produce an equal
    descriptor and therefore the same challenge message.

    Raises:
        ConfigurationError: If a required field is missing or blank
    """
    required = {
        "pay_to": pay_to,
        "price": price,
        "network": network,
        "resource_path": resource_path,
    }
    missing = [name for name, value in required.items() if not value or not str(value).strip()]
    if missing:
        raise ConfigurationError(f"Payment descriptor is missing: {', '.join(missing)}")

    if (asset_address is None) != (asset_decimals is None):
        raise ConfigurationError(
            "PRICE_ASSET_ADDRESS and PRICE_ASSET_DECIMALS must be configured together"
        )

    asset = None
    if asset_address is not None:
        asset = PriceAsset(address=asset_address.strip(), decimals=asset_decimals)

    return PaymentDescriptor(
        resource_url=build_resource_url(resource_path.strip(), base_url, customer_id),
        method=method.upper(),
        pay_to=pay_to.strip(),
        network=network.strip(),
        price=Price(amount=price.strip(), asset=asset),
    )


def descriptor_from_settings(
    settings: Settings,
    resource_path: str = DEFAULT_RESOURCE_PATH
) -> PaymentDescriptor:
    """Build the descriptor for the protected resource from Settings."""
    descriptor = build_descriptor(
        pay_to=settings.PAY_TO_ADDRESS,
        price=settings.PRICE,
        network=settings.NETWORK,
        resource_path=resource_path,
        base_url=settings.PUBLIC_BASE_URL,
        customer_id=settings.CUSTOMER_ID,
        asset_address=settings.PRICE_ASSET_ADDRESS,
        asset_decimals=settings.PRICE_ASSET_DECIMALS,
    )
    logger.info(
        f"Payment descriptor: {descriptor.resource_url} on {descriptor.network}, "
        f"{descriptor.price.amount} to {descriptor.pay_to}"
    )
    return descriptor


def build_challenge_message(descriptor: PaymentDescriptor) -> str:
    """
    Build the unsigned message a client must countersign.

    Fields are joined in a fixed order with a fixed delimiter so that every
    denial for the same descriptor carries a byte-identical message.
    """
    return CHALLENGE_DELIMITER.join([
        descriptor.resource_url,
        descriptor.network,
        descriptor.pay_to,
        descriptor.price.amount,
    ])

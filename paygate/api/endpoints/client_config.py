# paygate/api/endpoints/client_config.py
from fastapi import APIRouter, Depends, Request
import logging

from paygate.api.models.client_config import ClientConfigResponse
from paygate.core.config import Settings, get_settings
from paygate.payment.gate import PaymentGate

logger = logging.getLogger(__name__)

router = APIRouter()


def get_payment_gate(request: Request) -> PaymentGate:
    """The application's payment gate, built once at startup."""
    return request.app.state.gate


@router.get("/config", response_model=ClientConfigResponse)
async def get_client_config(
    settings: Settings = Depends(get_settings),
    gate: PaymentGate = Depends(get_payment_gate)
) -> ClientConfigResponse:
    """
    Public configuration for the browser payment widget.

    The payment terms come from the same descriptor the gate verifies
    against, so the widget signs exactly what the facilitator checks.
    """
    descriptor = gate.descriptor
    logger.info("Client config endpoint accessed.")
    return ClientConfigResponse(
        clientId=settings.CLIENT_ID,
        resourceUrl=descriptor.resource_url,
        network=descriptor.network,
        payTo=descriptor.pay_to,
        price=descriptor.price.amount,
        paymentMessage=gate.challenge_message,
    )

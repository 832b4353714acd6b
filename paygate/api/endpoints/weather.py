# paygate/api/endpoints/weather.py
from fastapi import APIRouter, Depends
import logging

from paygate.api.models.weather import WeatherData, WeatherResponse
from paygate.payment.gate import PaymentContext
from paygate.payment.middleware import get_payment_context

logger = logging.getLogger(__name__)

router = APIRouter()

# Route of the protected resource, relative to the API prefix
RESOURCE_ROUTE = "/weather"


@router.api_route(RESOURCE_ROUTE, methods=["GET", "POST"], response_model=WeatherResponse)
async def get_weather(payment: PaymentContext = Depends(get_payment_context)) -> WeatherResponse:
    """
    Premium weather report. Only reachable once the payment gate granted access.

    Returns:
        WeatherResponse: The report plus the payment binding it was served under
    """
    logger.info(
        f"Serving weather [{payment.request_id}] to payer {payment.payer or 'unknown'}"
        f" (customer {payment.customer_id or '-'})"
    )
    return WeatherResponse(
        message="Access granted.",
        data=WeatherData(
            location="Shanghai",
            temp="22°C",
            condition="Partly Cloudy",
            accessMethod="Payment Settled",
        ),
        paidTo=payment.descriptor.pay_to,
        customerId=payment.customer_id,
    )

# paygate/payment/responses.py
"""
Response shaping for gate outcomes.

- Granted: the handler's response plus the facilitator's receipt headers
- Required: 402 with a JSON challenge and the X-Payment-Message header
- RedirectToPaymentUI: 302 to the payment UI, no body
"""
from typing import Dict, Mapping

from fastapi import Response
from starlette.responses import JSONResponse, RedirectResponse

from paygate.payment.gate import Granted, RedirectToPaymentUI, Required

X_PAYMENT_MESSAGE_HEADER = "X-Payment-Message"

PAYMENT_REQUIRED_MESSAGE = "Payment Required. Please sign the X-Payment-Message and submit via POST."
CONFIGURATION_MISMATCH_MESSAGE = "Configuration mismatch."

# Facilitator headers that describe its own transport, not the payment
NON_FORWARDABLE_HEADERS = {
    "connection",
    "content-encoding",
    "content-length",
    "content-type",
    "date",
    "keep-alive",
    "server",
    "set-cookie",
    "transfer-encoding",
}


def forwardable_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Filter facilitator headers down to the ones meant for the client."""
    return {
        key: value
        for key, value in headers.items()
        if key.lower() not in NON_FORWARDABLE_HEADERS
    }


def create_402_response(required: Required) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    The challenge message is carried both in the body and in the
    X-Payment-Message header for programmatic extraction.
    """
    headers = {
        key: value
        for key, value in forwardable_headers(required.response_headers).items()
        if key.lower() != X_PAYMENT_MESSAGE_HEADER.lower()
    }
    headers[X_PAYMENT_MESSAGE_HEADER] = required.challenge_message

    return JSONResponse(
        status_code=required.status,
        content={
            "message": PAYMENT_REQUIRED_MESSAGE,
            "paymentMessage": required.challenge_message,
        },
        headers=headers,
    )


def create_redirect_response(redirect: RedirectToPaymentUI) -> Response:
    """Send a browser to the payment UI."""
    return RedirectResponse(url=redirect.location, status_code=302)


def create_preflight_response() -> Response:
    """200 with an empty body for OPTIONS on a protected path."""
    return Response(status_code=200)


def create_inconsistency_response() -> JSONResponse:
    """500 for a server-side descriptor mismatch."""
    return JSONResponse(status_code=500, content={"error": CONFIGURATION_MISMATCH_MESSAGE})


def attach_receipt_headers(response: Response, granted: Granted) -> Response:
    """Merge the facilitator's receipt headers into the handler's response."""
    for header, value in forwardable_headers(granted.response_headers).items():
        response.headers[header] = value
    return response

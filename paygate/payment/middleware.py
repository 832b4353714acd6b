# paygate/payment/middleware.py
"""
FastAPI middleware for the payment gate.

This module provides HTTP middleware that:
1. Intercepts requests to protected endpoints
2. Answers OPTIONS on protected paths with an empty 200
3. Runs the PaymentGate (verify/settle via the facilitator)
4. Returns 402, 302 or 500 when access is not granted
5. Adds receipt headers to the protected resource's response
"""
import logging
from typing import Callable, Iterable, List

from fastapi import HTTPException, Request, Response
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware

from paygate.core.logging_utils import redact_headers
from paygate.payment.gate import (
    InternalInconsistency,
    PaymentContext,
    PaymentGate,
    RedirectToPaymentUI,
    Required,
)
from paygate.payment.responses import (
    attach_receipt_headers,
    create_402_response,
    create_inconsistency_response,
    create_preflight_response,
    create_redirect_response,
)

logger = logging.getLogger(__name__)

GATED_METHODS = ("GET", "POST")
CORS_ALLOW_METHODS = ["GET", "POST", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Content-Type", "X-Payment", "Authorization", "X-Payment-Message"]
CORS_EXPOSE_HEADERS = ["X-Payment-Receipt", "X-Payment-Message", "X-PAYMENT-RESPONSE"]


def is_protected_endpoint(method: str, path: str, protected_paths: Iterable[str]) -> bool:
    """Check if the request matches a protected endpoint."""
    if method not in GATED_METHODS and method != "OPTIONS":
        return False
    normalized = path.rstrip("/") or "/"
    return any(normalized == (protected.rstrip("/") or "/") for protected in protected_paths)


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check for forwarded headers first
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fall back to direct connection
    if request.client:
        return request.client.host

    return "unknown"


class PaymentGateMiddleware(BaseHTTPMiddleware):
    """
    Payment gate middleware for FastAPI.

    For protected endpoints this middleware:
    - Answers OPTIONS with 200 and no body
    - Returns HTTP 402 with the challenge message if payment is missing or rejected
    - Redirects browser navigations to the payment UI
    - Hands a PaymentContext to the handler and adds receipt headers on success

    All other requests pass through unchanged.
    """

    def __init__(self, app, gate: PaymentGate, protected_paths: List[str]):
        super().__init__(app)
        self.gate = gate
        self.protected_paths = list(protected_paths)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        if not is_protected_endpoint(request.method, request.url.path, self.protected_paths):
            return await call_next(request)

        if request.method == "OPTIONS":
            return create_preflight_response()

        client_ip = get_client_ip(request)
        logger.debug(f"paygate: headers for {request.method} {request.url.path}: {redact_headers(request.headers)}")

        try:
            result = await self.gate.evaluate(
                method=request.method,
                path=request.url.path,
                headers=request.headers,
                client_ip=client_ip,
            )
        except InternalInconsistency as e:
            logger.error(f"paygate: configuration mismatch on {request.url.path}: {e}")
            return create_inconsistency_response()

        if isinstance(result, RedirectToPaymentUI):
            return create_redirect_response(result)

        if isinstance(result, Required):
            return create_402_response(result)

        request.state.payment = result.context
        response = await call_next(request)
        return attach_receipt_headers(response, result)


def get_payment_context(request: Request) -> PaymentContext:
    """
    FastAPI dependency returning the PaymentContext of a granted request.

    Raises:
        HTTPException: 500 if the route is not behind the payment gate
    """
    context = getattr(request.state, "payment", None)
    if not isinstance(context, PaymentContext):
        logger.error(f"Route {request.url.path} requires payment but is not protected by the gate")
        raise HTTPException(status_code=500, detail="Payment gate is not configured for this route")
    return context


class PreflightCORSMiddleware(CORSMiddleware):
    """
    CORSMiddleware whose preflight responses are always 200 with no body.

    A preflight Starlette would reject with 400 (disallowed origin, method
    or headers) is answered without any Access-Control-Allow-* header
    instead, so the browser still blocks the actual request.
    """

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        rejected = response.status_code != 200
        headers = {
            key: value
            for key, value in response.headers.items()
            if key.lower() not in ("content-length", "content-type")
            and not (rejected and key.lower().startswith("access-control-allow-"))
        }
        if rejected:
            logger.info(f"CORS preflight rejected: {response.body.decode(errors='replace')}")
        return Response(status_code=200, headers=headers)


def cors_options(origins: List[str]) -> dict:
    """Keyword arguments for PreflightCORSMiddleware."""
    return {
        "allow_origins": origins or ["*"],
        "allow_credentials": True,
        "allow_methods": CORS_ALLOW_METHODS,
        "allow_headers": CORS_ALLOW_HEADERS,
        "expose_headers": CORS_EXPOSE_HEADERS,
    }

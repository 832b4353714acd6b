# paygate/payment/gate.py
"""
Payment gate: decides, per request, whether to grant access, challenge for
payment (402) or redirect a browser to the payment UI.

The gate is stateless across requests. Each call to evaluate() builds its
own PaymentContext; nothing is shared between concurrent requests apart
from the immutable descriptor and the facilitator backend.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel

from paygate.payment.audit import AuditEventType, AuditLog, generate_request_id
from paygate.payment.descriptor import PaymentDescriptor, build_challenge_message
from paygate.payment.facilitator import (
    Facilitator,
    FacilitatorRequest,
    FacilitatorResult,
)

logger = logging.getLogger(__name__)

X_PAYMENT_HEADER = "X-Payment"
AUTHORIZATION_HEADER = "Authorization"

NAVIGATION_METHODS = ("GET",)
DOCUMENT_MEDIA_TYPES = ("text/html", "application/xhtml+xml")


class GateState(str, Enum):
    NO_PROOF_PRESENTED = "no_proof_presented"
    PROOF_PRESENTED = "proof_presented"
    GRANTED = "granted"
    DENIED = "denied"


class InternalInconsistency(Exception):
    """What the facilitator settled does not match what this server advertised."""


class PaymentContext(BaseModel):
    """
    Per-request payment facts handed to the resource handler.

    customer_id is taken from the descriptor the facilitator accepted,
    never from a client-supplied header.
    """
    request_id: str
    descriptor: PaymentDescriptor
    customer_id: Optional[str] = None
    payer: Optional[str] = None
    receipt_headers: Dict[str, str] = {}

    class Config:
        frozen = True


class Granted(BaseModel):
    response_headers: Dict[str, str] = {}
    context: PaymentContext


class Required(BaseModel):
    status: int = 402
    response_headers: Dict[str, str] = {}
    challenge_message: str
    reason: Optional[str] = None


class RedirectToPaymentUI(BaseModel):
    location: str


GateResult = Union[Granted, Required, RedirectToPaymentUI]


def _lower_keys(headers: Mapping[str, str]) -> Dict[str, str]:
    return {key.lower(): value for key, value in headers.items()}


def is_browser_navigation(method: str, headers: Mapping[str, str]) -> bool:
    """
    True only when all of the following hold:
    - the method is a navigation method (GET)
    - no credential of any kind (payment proof or Authorization) is present
    - the client accepts a document type (text/html)
    """
    lowered = _lower_keys(headers)
    if method.upper() not in NAVIGATION_METHODS:
        return False
    if lowered.get(X_PAYMENT_HEADER.lower()) or lowered.get(AUTHORIZATION_HEADER.lower()):
        return False
    accept = lowered.get("accept", "").lower()
    return any(media_type in accept for media_type in DOCUMENT_MEDIA_TYPES)


class PaymentGate:
    """
    Request-gating state machine in front of a protected resource.

    NoProofPresented -> settle(proof=None) -> Required
    ProofPresented   -> [verify] -> settle -> Granted | Denied -> Required
    Denied browser navigations become RedirectToPaymentUI.
    """

    def __init__(
        self,
        descriptor: PaymentDescriptor,
        facilitator: Facilitator,
        payment_ui_url: str,
        verify_before_settle: bool = False,
        timeout_seconds: float = 300.0,
        audit_log: Optional[AuditLog] = None
    ):
        self.descriptor = descriptor
        self.facilitator = facilitator
        self.payment_ui_url = payment_ui_url
        self.verify_before_settle = verify_before_settle
        self.timeout_seconds = timeout_seconds
        self.audit_log = audit_log
        # Built once; identical for every denial
        self.challenge_message = build_challenge_message(descriptor)

    async def evaluate(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        client_ip: Optional[str] = None
    ) -> GateResult:
        """
        Decide the outcome of one request.

        Args:
            method: HTTP method of the request
            path: Request path (for logging)
            headers: Request headers
            client_ip: Client address (for logging)

        Returns:
            Granted, Required or RedirectToPaymentUI

        Raises:
            InternalInconsistency: If the facilitator settled a different resource
        """
        request_id = generate_request_id()
        proof = _lower_keys(headers).get(X_PAYMENT_HEADER.lower()) or None
        state = GateState.PROOF_PRESENTED if proof else GateState.NO_PROOF_PRESENTED

        logger.info(
            f"paygate [{request_id}]: {method} {path} from {client_ip or 'unknown'}, "
            f"proof {'present' if proof else 'absent'} -> {state.value}"
        )
        self._audit(AuditEventType.REQUEST_RECEIVED, request_id, method, path, proof, client_ip)

        request = FacilitatorRequest(descriptor=self.descriptor, method=method.upper(), proof=proof)

        try:
            result = await self._call_facilitator(request)
        except Exception as e:
            # Timeouts and transport errors look like a rejected proof to the client
            reason = "facilitator timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
            logger.warning(f"paygate [{request_id}]: facilitator unavailable: {reason}")
            self._audit(
                AuditEventType.FACILITATOR_UNAVAILABLE, request_id, method, path, proof, client_ip,
                reason=reason,
            )
            return self._deny(request_id, method, path, headers, proof, client_ip, None, reason)

        if not result.ok:
            return self._deny(request_id, method, path, headers, proof, client_ip, result, result.reason)

        try:
            self._check_consistency(request_id, result)
        except InternalInconsistency as e:
            self._audit(AuditEventType.ERROR, request_id, method, path, proof, client_ip, reason=str(e))
            raise

        payer = result.body.get("payer") if isinstance(result.body, dict) else None
        context = PaymentContext(
            request_id=request_id,
            descriptor=self.descriptor,
            customer_id=self.descriptor.customer_id,
            payer=payer,
            receipt_headers=result.headers,
        )
        logger.info(f"paygate [{request_id}]: {method} {path} -> {GateState.GRANTED.value}")
        self._audit(
            AuditEventType.PAYMENT_SETTLED, request_id, method, path, proof, client_ip, payer=payer,
        )
        return Granted(response_headers=result.headers, context=context)

    async def _call_facilitator(self, request: FacilitatorRequest) -> FacilitatorResult:
        if self.verify_before_settle and request.proof:
            verified = await asyncio.wait_for(
                self.facilitator.verify(request), timeout=self.timeout_seconds
            )
            if not verified.ok:
                return verified

        return await asyncio.wait_for(
            self.facilitator.settle(request), timeout=self.timeout_seconds
        )

    def _check_consistency(self, request_id: str, result: FacilitatorResult) -> None:
        if not isinstance(result.body, dict):
            return
        settled_resource = result.body.get("resource") or result.body.get("resourceUrl")
        # Only a plain URL string is comparable with the descriptor
        if not isinstance(settled_resource, str) or not settled_resource:
            return
        if settled_resource != self.descriptor.resource_url:
            logger.error(
                f"paygate [{request_id}]: facilitator settled {settled_resource!r} "
                f"but descriptor is {self.descriptor.resource_url!r}"
            )
            raise InternalInconsistency(
                f"Settled resource {settled_resource!r} does not match {self.descriptor.resource_url!r}"
            )

    def _deny(
        self,
        request_id: str,
        method: str,
        path: str,
        headers: Mapping[str, str],
        proof: Optional[str],
        client_ip: Optional[str],
        result: Optional[FacilitatorResult],
        reason: Optional[str]
    ) -> GateResult:
        if proof:
            logger.warning(
                f"paygate [{request_id}]: {method} {path} -> {GateState.DENIED.value}: "
                f"{reason or 'unknown reason'}"
            )
            self._audit(
                AuditEventType.PAYMENT_FAILED, request_id, method, path, proof, client_ip,
                reason=reason,
            )

        if is_browser_navigation(method, headers):
            logger.info(f"paygate [{request_id}]: navigation request, redirecting to {self.payment_ui_url}")
            self._audit(AuditEventType.PAYMENT_REDIRECTED, request_id, method, path, proof, client_ip)
            return RedirectToPaymentUI(location=self.payment_ui_url)

        logger.info(f"paygate [{request_id}]: {method} {path} -> 402")
        self._audit(AuditEventType.PAYMENT_REQUIRED_SENT, request_id, method, path, proof, client_ip)
        return Required(
            response_headers=result.headers if result is not None else {},
            challenge_message=self.challenge_message,
            reason=reason,
        )

    def _audit(
        self,
        event_type: AuditEventType,
        request_id: str,
        method: str,
        path: str,
        proof: Optional[str],
        client_ip: Optional[str],
        payer: Optional[str] = None,
        **extra: Any
    ) -> None:
        if self.audit_log is None:
            return
        self.audit_log.log_transition(
            event_type,
            method=method,
            path=path,
            proof_present=bool(proof),
            client_ip=client_ip,
            payer=payer,
            request_id=request_id,
            **extra,
        )

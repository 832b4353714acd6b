# paygate/services/facilitator_api.py
import requests
from requests.exceptions import RequestException
import logging
from typing import Any, Dict, Tuple
from urllib.parse import urljoin

logger = logging.getLogger(__name__)

SECRET_KEY_HEADER = "x-secret-key"


def parse_facilitator_response(response: requests.Response) -> Tuple[int, Dict[str, str], Any]:
    """
    Normalize a facilitator HTTP response into (status, headers, body).

    Facilitators answer in one of two shapes:
    - a settle-result envelope: {"status": 402, "responseHeaders": {...}, "responseBody": {...}}
    - a plain JSON body, in which case the HTTP status is the result status

    Only headers inside the envelope are meant for the client; the HTTP
    response headers of the facilitator itself are never returned.
    """
    try:
        data = response.json()
    except ValueError:
        logger.warning(f"Facilitator returned a non-JSON body (HTTP {response.status_code})")
        return response.status_code, {}, {"error": response.text[:200]}

    if isinstance(data, dict) and isinstance(data.get("status"), int):
        headers = data.get("responseHeaders") or {}
        if not isinstance(headers, dict):
            logger.warning(f"Facilitator 'responseHeaders' is not an object: {type(headers)}")
            headers = {}
        body = data.get("responseBody", {})
        return data["status"], {str(k): str(v) for k, v in headers.items()}, body

    return response.status_code, {}, data


def post_to_facilitator(
    base_url: str,
    operation: str,
    payload: Dict[str, Any],
    secret_key: str,
    timeout: float
) -> Tuple[int, Dict[str, str], Any]:
    """
    POST a payment request to the facilitator.

    Args:
        base_url: Facilitator base URL
        operation: "verify" or "settle"
        payload: Canonical descriptor payload including the payment proof
        secret_key: Credential authenticating this server with the facilitator
        timeout: Maximum seconds to wait for the facilitator

    Returns:
        Tuple of (status, client-facing headers, body)

    Raises:
        RequestException: If the facilitator cannot be reached or times out
    """
    api_url = urljoin(base_url.rstrip("/") + "/", operation)
    headers = {
        "Content-Type": "application/json",
        SECRET_KEY_HEADER: secret_key,
    }

    try:
        response = requests.post(api_url, json=payload, headers=headers, timeout=timeout)
    except RequestException as e:
        logger.error(f"Error calling facilitator {operation} ({api_url}): {e}")
        raise  # Let the gate turn it into a 402

    status, client_headers, body = parse_facilitator_response(response)
    logger.debug(f"Facilitator {operation} answered {status} (HTTP {response.status_code})")
    return status, client_headers, body


def verify_payment(
    base_url: str,
    payload: Dict[str, Any],
    secret_key: str,
    timeout: float
) -> Tuple[int, Dict[str, str], Any]:
    """Ask the facilitator whether a payment proof is valid, without settling it."""
    return post_to_facilitator(base_url, "verify", payload, secret_key, timeout)


def settle_payment(
    base_url: str,
    payload: Dict[str, Any],
    secret_key: str,
    timeout: float
) -> Tuple[int, Dict[str, str], Any]:
    """Ask the facilitator to verify and settle a payment proof."""
    return post_to_facilitator(base_url, "settle", payload, secret_key, timeout)

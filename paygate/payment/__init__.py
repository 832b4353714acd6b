# paygate/payment/__init__.py
"""
Payment gate for pay-per-request access (HTTP 402 Payment Required).

Key components:
- descriptor: canonical payment terms of a protected resource and the challenge message
- facilitator: verify/settle backends (HTTP, x402 SDK, mock)
- gate: per-request state machine (grant, challenge, redirect)
- responses: shaping of 200/402/302 responses
- middleware: FastAPI middleware and CORS wiring
- audit: JSON lines audit trail of gate transitions

Configuration is loaded from environment variables via paygate.core.config.
"""

__version__ = "0.1.0"

# tests/test_facilitator_api.py
"""
Unit tests for the facilitator HTTP client.
"""
import pytest
from unittest.mock import patch, MagicMock

from requests.exceptions import ConnectionError, ReadTimeout

from paygate.services.facilitator_api import (
    SECRET_KEY_HEADER,
    parse_facilitator_response,
    post_to_facilitator,
    settle_payment,
    verify_payment,
)

PAYLOAD = {"resourceUrl": "/weather", "paymentData": "proof"}


def mock_response(status_code: int, json_data=None, text: str = ""):
    response = MagicMock()
    response.status_code = status_code
    if json_data is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = json_data
    response.text = text
    return response


class TestParseFacilitatorResponse:
    """Test normalization of facilitator responses."""

    def test_envelope(self):
        response = mock_response(200, {
            "status": 402,
            "responseHeaders": {"X-Payment-Requirements": "opaque"},
            "responseBody": {"error": "expired"},
        })

        status, headers, body = parse_facilitator_response(response)

        assert status == 402
        assert headers == {"X-Payment-Requirements": "opaque"}
        assert body == {"error": "expired"}

    def test_envelope_without_headers(self):
        status, headers, body = parse_facilitator_response(mock_response(200, {"status": 200}))

        assert status == 200
        assert headers == {}
        assert body == {}

    def test_envelope_with_invalid_headers(self):
        response = mock_response(200, {"status": 200, "responseHeaders": ["not", "a", "dict"]})

        _, headers, _ = parse_facilitator_response(response)

        assert headers == {}

    def test_header_values_are_strings(self):
        response = mock_response(200, {"status": 200, "responseHeaders": {"X-Count": 3}})

        _, headers, _ = parse_facilitator_response(response)

        assert headers == {"X-Count": "3"}

    def test_plain_body(self):
        status, headers, body = parse_facilitator_response(mock_response(401, {"error": "bad key"}))

        assert status == 401
        assert headers == {}
        assert body == {"error": "bad key"}

    def test_string_status_is_not_an_envelope(self):
        status, _, body = parse_facilitator_response(mock_response(200, {"status": "settled"}))

        assert status == 200
        assert body == {"status": "settled"}

    def test_non_json_body_truncated(self):
        status, _, body = parse_facilitator_response(mock_response(500, text="x" * 500))

        assert status == 500
        assert body == {"error": "x" * 200}


class TestPostToFacilitator:
    """Test facilitator requests."""

    @patch("paygate.services.facilitator_api.requests.post")
    def test_request_shape(self, mock_post):
        mock_post.return_value = mock_response(200, {"status": 200})

        post_to_facilitator("https://facilitator.example.com/v1", "settle", PAYLOAD, "secret", 12.5)

        mock_post.assert_called_once_with(
            "https://facilitator.example.com/v1/settle",
            json=PAYLOAD,
            headers={"Content-Type": "application/json", SECRET_KEY_HEADER: "secret"},
            timeout=12.5,
        )

    @patch("paygate.services.facilitator_api.requests.post")
    def test_trailing_slash_base_url(self, mock_post):
        mock_post.return_value = mock_response(200, {"status": 200})

        post_to_facilitator("https://facilitator.example.com/", "verify", PAYLOAD, "secret", 5)

        assert mock_post.call_args.args[0] == "https://facilitator.example.com/verify"

    @patch("paygate.services.facilitator_api.requests.post")
    def test_settle_and_verify_helpers(self, mock_post):
        mock_post.return_value = mock_response(200, {"status": 200})

        settle_payment("https://f.example.com", PAYLOAD, "secret", 5)
        verify_payment("https://f.example.com", PAYLOAD, "secret", 5)

        urls = [call.args[0] for call in mock_post.call_args_list]
        assert urls == ["https://f.example.com/settle", "https://f.example.com/verify"]

    @patch("paygate.services.facilitator_api.requests.post")
    @pytest.mark.parametrize("error", [ConnectionError("refused"), ReadTimeout("slow")])
    def test_transport_errors_propagate(self, mock_post, error):
        mock_post.side_effect = error

        with pytest.raises(type(error)):
            post_to_facilitator("https://f.example.com", "settle", PAYLOAD, "secret", 5)

"""
Unit Tests - Webhook Signature Verification
"""
import base64
import hashlib
import hmac

import pytest

from src.webhooks.verification import compute_signature, verify_signature

SECRET = "whsec-test"
URL = "https://example.test/api/webhooks/pos"
BODY = b'{"merchant_id":"M1","type":"order.updated","event_id":"e1"}'


def _signature(body: bytes = BODY, secret: str = SECRET, url: str = URL) -> str:
    digest = hmac.new(secret.encode(), url.encode() + body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


class TestVerifySignature:

    def test_valid_signature(self):
        assert verify_signature(BODY, _signature(), SECRET, URL) is True

    def test_compute_signature_matches_reference(self):
        assert compute_signature(BODY, SECRET, URL) == _signature()

    @pytest.mark.parametrize("index", [0, len(BODY) // 2, len(BODY) - 1])
    def test_single_byte_body_mutation_fails(self, index):
        mutated = bytearray(BODY)
        mutated[index] ^= 0x01
        assert verify_signature(bytes(mutated), _signature(), SECRET, URL) is False

    def test_single_character_signature_mutation_fails(self):
        signature = _signature()
        replacement = "A" if signature[0] != "A" else "B"
        assert verify_signature(BODY, replacement + signature[1:], SECRET, URL) is False

    def test_url_is_part_of_signed_payload(self):
        assert verify_signature(BODY, _signature(), SECRET, URL + "/other") is False

    def test_wrong_secret_fails(self):
        assert verify_signature(BODY, _signature(secret="other"), SECRET, URL) is False

    @pytest.mark.parametrize("signature", [None, ""])
    def test_missing_signature_fails(self, signature):
        assert verify_signature(BODY, signature, SECRET, URL) is False

    @pytest.mark.parametrize("secret", [None, ""])
    def test_missing_secret_fails(self, secret):
        assert verify_signature(BODY, _signature(), secret, URL) is False

    def test_non_ascii_signature_returns_false(self):
        assert verify_signature(BODY, "sïgnature", SECRET, URL) is False

"""
Tests for the Paystack REST client. HTTP calls are replaced with canned responses.
"""
import dataclasses

import pytest

from tailor_platform.billing import paystack


class _FakeResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body or {}
        self.text = "{}" if body is not None else ""

    def json(self):
        return self._body


@pytest.fixture
def paystack_cfg(cfg):
    return dataclasses.replace(cfg, PAYSTACK_SECRET_KEY="sk_test_tailor", PAYSTACK_BASE_URL="https://api.paystack.test/")


def test_verify_transaction_escapes_reference(paystack_cfg, monkeypatch):
    calls = []

    def fake_get(url, headers=None, timeout=None):
        calls.append({"url": url, "headers": headers})
        return _FakeResponse(200, {"status": True, "data": {"status": "success", "amount": 300000}})

    monkeypatch.setattr(paystack.requests, "get", fake_get)
    tx = paystack.verify_transaction(paystack_cfg, " ../bank/resolve?x=1 ")
    assert tx == {"status": "success", "amount": 300000}
    assert calls[0]["url"] == "https://api.paystack.test/transaction/verify/..%2Fbank%2Fresolve%3Fx%3D1"
    assert calls[0]["headers"]["Authorization"] == "Bearer sk_test_tailor"


def test_verify_transaction_errors(paystack_cfg, cfg, monkeypatch):
    with pytest.raises(RuntimeError, match="paystack_secret_key_missing"):
        paystack.verify_transaction(cfg, "ref_1")

    monkeypatch.setattr(paystack.requests, "get", lambda *a, **kw: _FakeResponse(400, {"message": "bad"}))
    with pytest.raises(RuntimeError, match="paystack_verify_error 400"):
        paystack.verify_transaction(paystack_cfg, "ref_1")

    monkeypatch.setattr(
        paystack.requests, "get", lambda *a, **kw: _FakeResponse(200, {"status": False, "message": "not found"})
    )
    with pytest.raises(RuntimeError, match="paystack_verify_failed: not found"):
        paystack.verify_transaction(paystack_cfg, "ref_1")

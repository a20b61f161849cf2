"""
Tests for stored payment methods and the Paystack card-authorization helpers.
"""
from tailor_platform.billing import paystack


def _card(provider_id, last4="4242", **extra):
    body = {"provider_id": provider_id, "type": "card", "last4": last4, "expiry_month": "09", "expiry_year": "2031", "brand": "visa"}
    body.update(extra)
    return body


def test_first_method_becomes_default(client, register):
    account = register()
    r = client.post("/subscriptions/payment-methods", json=_card("AUTH_1"), headers=account["headers"])
    assert r.status_code == 200, r.text
    assert r.json()["payment_method"]["is_default"] is True

    r = client.post(
        "/subscriptions/payment-methods", json=_card("AUTH_2", last4="1111", make_default=False), headers=account["headers"]
    )
    assert r.json()["payment_method"]["is_default"] is False

    methods = client.get("/subscriptions/payment-methods", headers=account["headers"]).json()["payment_methods"]
    assert [m["provider_id"] for m in methods] == ["AUTH_1", "AUTH_2"]


def test_set_default_keeps_single_default(client, register):
    account = register()
    first = client.post("/subscriptions/payment-methods", json=_card("AUTH_1"), headers=account["headers"]).json()
    second = client.post(
        "/subscriptions/payment-methods", json=_card("AUTH_2", make_default=False), headers=account["headers"]
    ).json()
    second_id = second["payment_method"]["payment_method_id"]

    r = client.post(f"/subscriptions/payment-methods/{second_id}/set-default", headers=account["headers"])
    assert r.status_code == 200
    assert r.json()["payment_method"]["is_default"] is True

    methods = client.get("/subscriptions/payment-methods", headers=account["headers"]).json()["payment_methods"]
    defaults = [m["payment_method_id"] for m in methods if m["is_default"]]
    assert defaults == [second_id]
    assert first["payment_method"]["payment_method_id"] != second_id


def test_same_provider_id_is_refreshed_not_duplicated(client, register):
    account = register()
    client.post("/subscriptions/payment-methods", json=_card("AUTH_1", last4="1234"), headers=account["headers"])
    client.post("/subscriptions/payment-methods", json=_card("AUTH_1", last4="5678"), headers=account["headers"])
    methods = client.get("/subscriptions/payment-methods", headers=account["headers"]).json()["payment_methods"]
    assert len(methods) == 1
    assert methods[0]["last4"] == "5678"


def test_deleting_default_promotes_another(client, register):
    account = register()
    first = client.post("/subscriptions/payment-methods", json=_card("AUTH_1"), headers=account["headers"]).json()
    client.post("/subscriptions/payment-methods", json=_card("AUTH_2", make_default=False), headers=account["headers"])

    r = client.delete(
        f"/subscriptions/payment-methods/{first['payment_method']['payment_method_id']}", headers=account["headers"]
    )
    assert r.status_code == 200
    remaining = r.json()["payment_methods"]
    assert len(remaining) == 1
    assert remaining[0]["provider_id"] == "AUTH_2"
    assert remaining[0]["is_default"] is True


def test_payment_method_validation_and_ownership(client, register):
    owner = register(email="owner@example.com")
    other = register(email="other@example.com")

    r = client.post("/subscriptions/payment-methods", json=_card("AUTH_X", last4="12a4"), headers=owner["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_last4"

    r = client.post("/subscriptions/payment-methods", json=_card("AUTH_X", type="paypal"), headers=owner["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_payment_method_type"

    pm_id = client.post(
        "/subscriptions/payment-methods", json=_card("AUTH_X"), headers=owner["headers"]
    ).json()["payment_method"]["payment_method_id"]
    r = client.delete(f"/subscriptions/payment-methods/{pm_id}", headers=other["headers"])
    assert r.status_code == 404
    assert r.json()["detail"] == "payment_method_not_found"


def test_authorize_payment_method_returns_checkout_params(client, register, cfg):
    account = register()
    r = client.post("/payments/authorize-payment-method", headers=account["headers"])
    assert r.status_code == 200
    body = r.json()
    assert body["public_key"] == "pk_test_tailor"
    assert body["amount"] == cfg.PAYMENT_AUTH_AMOUNT_KOBO
    assert body["reference"].startswith(f"auth_{account['user']['user_id']}_")
    assert body["metadata"]["purpose"] == "authorization"


def test_verify_authorization_stores_card_and_refunds(client, register, monkeypatch):
    account = register()
    refunds = []
    monkeypatch.setattr(
        paystack,
        "verify_transaction",
        lambda cfg, ref: {
            "status": "success",
            "amount": 5000,
            "authorization": {"authorization_code": "AUTH_card", "last4": "4081", "card_type": "mastercard"},
        },
    )
    monkeypatch.setattr(paystack, "refund_transaction", lambda cfg, ref, amount_kobo=None: refunds.append(ref) or {})

    ref = f"auth_{account['user']['user_id']}_1_ab"
    r = client.post("/payments/verify-authorization", json={"reference": ref}, headers=account["headers"])
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["processed"] is True
    assert body["refunded"] is True
    assert body["payment_method"]["brand"] == "mastercard"
    assert refunds == [ref]

    r = client.post("/payments/verify-authorization", json={"reference": ref}, headers=account["headers"])
    assert r.json()["processed"] is False


def test_verify_authorization_rejects_another_users_reference(client, register, monkeypatch):
    victim = register(email="victim@example.com")
    thief = register(email="thief@example.com")
    victim_id = victim["user"]["user_id"]
    refunds = []
    monkeypatch.setattr(
        paystack,
        "verify_transaction",
        lambda cfg, ref: {
            "status": "success",
            "amount": 5000,
            "metadata": {"user_id": victim_id, "purpose": "authorization"},
            "authorization": {"authorization_code": "AUTH_victim", "last4": "4081", "card_type": "visa"},
        },
    )
    monkeypatch.setattr(paystack, "refund_transaction", lambda cfg, ref, amount_kobo=None: refunds.append(ref) or {})

    r = client.post(
        "/payments/verify-authorization", json={"reference": f"auth_{victim_id}_1_ab"}, headers=thief["headers"]
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "reference_user_mismatch"

    # A reference carrying the thief's prefix still fails on the transaction's metadata.
    thief_ref = f"auth_{thief['user']['user_id']}_1_cd"
    r = client.post("/payments/verify-authorization", json={"reference": thief_ref}, headers=thief["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "reference_user_mismatch"

    assert refunds == []
    assert client.get("/subscriptions/payment-methods", headers=thief["headers"]).json()["payment_methods"] == []

    # The claim was released, so a retry is verified again instead of reported as a replay.
    r = client.post("/payments/verify-authorization", json={"reference": thief_ref}, headers=thief["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "reference_user_mismatch"


def test_verify_account_validates_number(client, register):
    account = register()
    r = client.post(
        "/payments/verify-account", json={"account_number": "123", "bank_code": "058"}, headers=account["headers"]
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_account_number"


def test_verify_account_resolves_name(client, register, monkeypatch):
    account = register()
    monkeypatch.setattr(
        paystack,
        "resolve_account",
        lambda cfg, account_number, bank_code: {"account_name": "ADA STITCH", "account_number": account_number},
    )
    r = client.post(
        "/payments/verify-account", json={"account_number": "0123456789", "bank_code": "058"}, headers=account["headers"]
    )
    assert r.status_code == 200
    assert r.json() == {"account_name": "ADA STITCH", "account_number": "0123456789", "bank_code": "058"}

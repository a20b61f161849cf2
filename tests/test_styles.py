"""
Tests for the style catalog (images are URLs or base64 data URLs uploaded to S3).
"""
from tailor_platform.storage import uploads

PNG_DATA_URL = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="


def _style(client, headers, **body):
    body.setdefault("image", "https://cdn.example.com/agbada.jpg")
    r = client.post("/styles", json=body, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()["style"]


def test_create_style_with_image_url(client, tailor):
    s = _style(client, tailor["headers"], name="Agbada", category="Men", details={"fabric": "aso-oke"})
    assert s["name"] == "Agbada"
    assert s["image_url"] == "https://cdn.example.com/agbada.jpg"
    assert s["details"] == {"fabric": "aso-oke"}


def test_create_style_requires_name_and_image(client, tailor):
    r = client.post("/styles", json={"image": "https://cdn.example.com/x.jpg"}, headers=tailor["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "name_required"

    r = client.post("/styles", json={"name": "Kaftan"}, headers=tailor["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "image_required"

    r = client.post("/styles", json={"name": "Kaftan", "image": "ftp://nope"}, headers=tailor["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_image_format"


def test_data_url_without_bucket_is_not_configured(client, tailor):
    """Uploading needs S3_BUCKET; without it the API answers 501."""
    r = client.post("/styles", json={"name": "Kaftan", "image": PNG_DATA_URL}, headers=tailor["headers"])
    assert r.status_code == 501
    assert r.json()["detail"] == "s3_bucket_missing"


def test_data_url_is_uploaded(client, tailor, monkeypatch):
    puts = []

    class FakeS3:
        def put_object(self, **kwargs):
            puts.append(kwargs)

    monkeypatch.setattr(uploads, "_get_s3_client", lambda cfg: FakeS3())
    s = _style(client, tailor["headers"], name="Kaftan", image=PNG_DATA_URL)
    assert len(puts) == 1
    assert puts[0]["ContentType"] == "image/png"
    assert puts[0]["Key"].startswith(f"styles/{tailor['user']['user_id']}/")
    assert s["image_url"].endswith(puts[0]["Key"])


def test_list_styles_filters(client, tailor):
    _style(client, tailor["headers"], name="Agbada", category="Men")
    _style(client, tailor["headers"], name="Buba", category="Women", description="loose blouse")
    _style(client, tailor["headers"], name="Iro", category="women")

    r = client.get("/styles", params={"category": "WOMEN"}, headers=tailor["headers"])
    assert sorted(s["name"] for s in r.json()["items"]) == ["Buba", "Iro"]

    r = client.get("/styles", params={"search": "blouse"}, headers=tailor["headers"])
    assert [s["name"] for s in r.json()["items"]] == ["Buba"]

    r = client.get("/styles", params={"sort": "name", "order": "asc", "limit": 2}, headers=tailor["headers"])
    body = r.json()
    assert [s["name"] for s in body["items"]] == ["Agbada", "Buba"]
    assert body["pagination"]["total_pages"] == 2


def test_update_style(client, tailor):
    s = _style(client, tailor["headers"], name="Agbada")
    r = client.put(
        f"/styles/{s['style_id']}",
        json={"description": "three-piece", "image": "https://cdn.example.com/new.jpg"},
        headers=tailor["headers"],
    )
    assert r.status_code == 200
    updated = r.json()["style"]
    assert updated["description"] == "three-piece"
    assert updated["image_url"] == "https://cdn.example.com/new.jpg"
    assert updated["related_orders"] == []


def test_style_with_orders_and_delete(client, tailor):
    """Deleting a style keeps its orders but clears their style link."""
    s = _style(client, tailor["headers"], name="Agbada")
    c = client.post("/clients", json={"name": "Emeka"}, headers=tailor["headers"]).json()["client"]
    o = client.post(
        "/orders",
        json={"client_id": c["client_id"], "style_id": s["style_id"], "total_amount": 40000},
        headers=tailor["headers"],
    ).json()["order"]
    assert o["style_name"] == "Agbada"

    detail = client.get(f"/styles/{s['style_id']}", headers=tailor["headers"]).json()["style"]
    assert [x["order_id"] for x in detail["related_orders"]] == [o["order_id"]]
    listed = client.get("/styles", headers=tailor["headers"]).json()["items"]
    assert listed[0]["order_count"] == 1

    r = client.delete(f"/styles/{s['style_id']}", headers=tailor["headers"])
    assert r.status_code == 200
    order = client.get(f"/orders/{o['order_id']}", headers=tailor["headers"]).json()["order"]
    assert order["style_id"] is None


def test_styles_are_tenant_scoped(client, tailor, register, subscribe):
    s = _style(client, tailor["headers"], name="Agbada")
    other = register(email="other@example.com")
    subscribe(other)
    r = client.get(f"/styles/{s['style_id']}", headers=other["headers"])
    assert r.status_code == 404
    assert r.json()["detail"] == "style_not_found"
    r = client.delete(f"/styles/{s['style_id']}", headers=other["headers"])
    assert r.status_code == 404

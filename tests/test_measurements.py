"""
Tests for measurement templates, per-template client measurements and unit settings.
"""
import pytest


@pytest.fixture
def shirt_template():
    return {
        "name": "Shirt",
        "gender": "male",
        "unit": "cm",
        "fields": [
            {"name": "Chest", "order": 2, "category": "upper"},
            {"name": "Neck", "order": 1},
            {"name": "Sleeve", "is_required": False, "order": 3},
        ],
    }


def test_first_template_is_default_and_completes_setup(client, tailor, shirt_template):
    """The first template becomes the default and finishes onboarding."""
    r = client.post("/measurement-templates", json=shirt_template, headers=tailor["headers"])
    assert r.status_code == 200, r.text
    body = r.json()
    tpl = body["template"]
    assert body["setup_completed"] is True
    assert tpl["is_default"] is True
    assert tpl["unit"] == "cm"
    assert [f["name"] for f in tpl["fields"]] == ["Neck", "Chest", "Sleeve"]
    assert [f["is_required"] for f in tpl["fields"]] == [True, True, False]
    assert all(f["unit"] == "cm" for f in tpl["fields"])
    assert tpl["fields"][1]["category"] == "upper"

    me = client.get("/auth/me", headers=tailor["headers"]).json()["user"]
    assert me["onboarding_step"] == "complete"
    assert me["has_completed_setup"] is True

    second = client.post(
        "/measurement-templates", json={"name": "Trouser", "fields": [{"name": "Waist"}]}, headers=tailor["headers"]
    ).json()["template"]
    assert second["is_default"] is False
    assert second["gender"] == "unisex"


def test_same_name_and_gender_replaces_fields(client, tailor, shirt_template):
    first = client.post("/measurement-templates", json=shirt_template, headers=tailor["headers"]).json()["template"]
    again = client.post(
        "/measurement-templates",
        json={"name": "Shirt", "gender": "male", "fields": [{"name": "Shoulder"}]},
        headers=tailor["headers"],
    ).json()["template"]
    assert again["template_id"] == first["template_id"]
    assert [f["name"] for f in again["fields"]] == ["Shoulder"]
    assert len(client.get("/measurement-templates", headers=tailor["headers"]).json()["templates"]) == 1


@pytest.mark.parametrize(
    "body, detail",
    [
        ({"fields": []}, "name_required"),
        ({"name": "X", "gender": "other"}, "invalid_gender"),
        ({"name": "X", "unit": "mm"}, "invalid_unit"),
        ({"name": "X", "fields": [{"name": "A"}, {"name": "a"}]}, "duplicate_field_name"),
        ({"name": "X", "fields": [{"name": "  "}]}, "field_name_required"),
    ],
)
def test_template_validation(client, tailor, body, detail):
    r = client.post("/measurement-templates", json=body, headers=tailor["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == detail


def test_update_archive_and_set_default(client, tailor, shirt_template):
    shirt = client.post("/measurement-templates", json=shirt_template, headers=tailor["headers"]).json()["template"]
    gown = client.post(
        "/measurement-templates", json={"name": "Gown", "gender": "female", "fields": [{"name": "Bust"}]},
        headers=tailor["headers"],
    ).json()["template"]

    r = client.post(f"/measurement-templates/{gown['template_id']}/set-default", headers=tailor["headers"])
    assert r.status_code == 200
    templates = client.get("/measurement-templates", headers=tailor["headers"]).json()["templates"]
    assert [t["name"] for t in templates if t["is_default"]] == ["Gown"]

    r = client.put(
        f"/measurement-templates/{shirt['template_id']}",
        json={"is_archived": True, "description": "old"},
        headers=tailor["headers"],
    )
    assert r.status_code == 200
    assert r.json()["template"]["is_archived"] is True
    names = [t["name"] for t in client.get("/measurement-templates", headers=tailor["headers"]).json()["templates"]]
    assert names == ["Gown"]
    names = [
        t["name"]
        for t in client.get(
            "/measurement-templates", params={"include_archived": True}, headers=tailor["headers"]
        ).json()["templates"]
    ]
    assert sorted(names) == ["Gown", "Shirt"]


def test_client_measurements_against_template(client, tailor, shirt_template):
    tpl = client.post("/measurement-templates", json=shirt_template, headers=tailor["headers"]).json()["template"]
    c = client.post("/clients", json={"name": "Segun"}, headers=tailor["headers"]).json()["client"]
    url = f"/clients/{c['client_id']}/measurements"

    r = client.post(url, json={"template_id": tpl["template_id"], "values": {"Neck": 38}}, headers=tailor["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "missing_required_fields"

    r = client.post(
        url,
        json={"template_id": tpl["template_id"], "values": {"Neck": 38, "Chest": 102}, "notes": "first fitting"},
        headers=tailor["headers"],
    )
    assert r.status_code == 200, r.text
    m = r.json()["measurement"]
    assert m["values"] == {"Neck": 38, "Chest": 102}
    assert m["template_name"] == "Shirt"
    assert m["template_unit"] == "cm"

    # Re-measuring replaces the record for that template.
    client.post(
        url,
        json={"template_id": tpl["template_id"], "values": {"Neck": 39, "Chest": 103}},
        headers=tailor["headers"],
    )
    listed = client.get(url, headers=tailor["headers"]).json()["measurements"]
    assert len(listed) == 1
    assert listed[0]["values"]["Neck"] == 39


def test_delete_template(client, tailor, shirt_template):
    tpl = client.post("/measurement-templates", json=shirt_template, headers=tailor["headers"]).json()["template"]
    r = client.delete(f"/measurement-templates/{tpl['template_id']}", headers=tailor["headers"])
    assert r.status_code == 200
    r = client.get(f"/measurement-templates/{tpl['template_id']}", headers=tailor["headers"])
    assert r.status_code == 404
    assert r.json()["detail"] == "template_not_found"


def test_deleting_default_template_promotes_another(client, tailor, shirt_template):
    h = tailor["headers"]
    shirt = client.post("/measurement-templates", json=shirt_template, headers=h).json()["template"]
    client.post(
        "/measurement-templates", json={"name": "Gown", "gender": "female", "fields": [{"name": "Bust"}]}, headers=h
    )
    assert shirt["is_default"] is True

    r = client.delete(f"/measurement-templates/{shirt['template_id']}", headers=h)
    assert r.status_code == 200
    templates = client.get("/measurement-templates", headers=h).json()["templates"]
    assert [(t["name"], t["is_default"]) for t in templates] == [("Gown", True)]


def test_rename_onto_existing_template_conflicts(client, tailor):
    h = tailor["headers"]
    client.post("/measurement-templates", json={"name": "A", "gender": "female", "fields": [{"name": "Bust"}]}, headers=h)
    b = client.post(
        "/measurement-templates", json={"name": "B", "gender": "female", "fields": [{"name": "Hip"}]}, headers=h
    ).json()["template"]

    r = client.put(f"/measurement-templates/{b['template_id']}", json={"name": "A"}, headers=h)
    assert r.status_code == 409
    assert r.json()["detail"] == "template_exists"

    # Same name under another gender is a different template.
    r = client.put(f"/measurement-templates/{b['template_id']}", json={"name": "A", "gender": "male"}, headers=h)
    assert r.status_code == 200, r.text
    assert r.json()["template"]["name"] == "A"

    r = client.put(f"/measurement-templates/{b['template_id']}", json={"gender": "female"}, headers=h)
    assert r.status_code == 409


def test_templates_are_tenant_scoped(client, tailor, register, subscribe, shirt_template):
    tpl = client.post("/measurement-templates", json=shirt_template, headers=tailor["headers"]).json()["template"]
    other = register(email="other@example.com")
    subscribe(other)
    r = client.put(f"/measurement-templates/{tpl['template_id']}", json={"name": "Mine"}, headers=other["headers"])
    assert r.status_code == 404


def test_measurement_settings(client, register):
    """Unit preference defaults to inches and only accepts in/cm."""
    account = register()
    r = client.get("/users/measurement-settings", headers=account["headers"])
    assert r.status_code == 200
    assert r.json()["settings"]["default_unit"] == "in"

    r = client.put("/users/measurement-settings", json={"default_unit": "CM"}, headers=account["headers"])
    assert r.status_code == 200
    assert r.json()["settings"]["default_unit"] == "cm"

    r = client.put("/users/measurement-settings", json={"default_unit": "yards"}, headers=account["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_unit"

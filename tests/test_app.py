import io
import zipfile
from pathlib import Path

import pytest

TEMPLATE = "---\ntitle: Offer\n---\n# {{ meta.title }} for {{ client.name }}\n\n{{ client.email }}\n"


@pytest.fixture
def offer(settings):
    Path(settings.template_dir, "offer.md.j2").write_text(TEMPLATE, encoding="utf-8")
    Path(settings.data_dir, "offer.csv").write_text("key,value\nclient.name,Acme\n", encoding="utf-8")
    return "offer"


def test_index(client):
    assert client.get("/").data == b"docfill is running"


def test_render_json(client):
    resp = client.post("/render", json={"template": "Hello {{ name }}!", "data": {"name": "World"}})
    assert resp.status_code == 200
    payload = resp.get_json()
    assert payload["markup"] == 'Hello <span class="imported-value" data-field="name">World</span>!'
    assert payload["stats"] == {"total_fields": 1, "resolved_fields": 1, "missing_fields": 0}


def test_render_accepts_csv_text_and_a_locale(client):
    resp = client.post("/render", json={
        "template": "{{ total|currency }}",
        "data": "total,1234.5\n",
        "locale": "en-US",
    })
    assert ">$1,234.50<" in resp.get_json()["markup"]


def test_render_rejects_bad_payloads(client):
    resp = client.post("/render", json={"data": {}})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "VALIDATION_ERROR"


def test_markdown_document(client, offer):
    resp = client.get(f"/documents/{offer}.md")
    assert resp.status_code == 200
    text = resp.data.decode("utf-8")
    assert text.startswith("# Offer for <span")
    assert "[[client.email]]" in text


def test_unknown_template_is_a_client_error(client):
    resp = client.get("/documents/nothing.md")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "VALIDATION_ERROR"


def test_unsupported_format_is_not_found(client, offer):
    assert client.get(f"/documents/{offer}.odt").status_code == 404


def test_html_without_pandoc_is_a_server_error(client, offer):
    resp = client.get(f"/documents/{offer}.html")
    assert resp.status_code == 500
    assert resp.get_json()["error"] == "OUTPUT_ERROR"


def test_skeleton_csv(client, offer):
    resp = client.get(f"/documents/{offer}/skeleton.csv")
    assert resp.mimetype == "text/csv"
    assert resp.data.decode("utf-8").splitlines() == [
        "key,value,comment", "client.name,,Field: client.name", "client.email,,Field: client.email",
    ]


def test_fields_workbook(client, offer):
    resp = client.get(f"/documents/{offer}/fields.xlsx")
    assert resp.status_code == 200
    assert resp.data[:2] == b"PK"


def test_bundle(client, offer):
    resp = client.get(f"/documents/{offer}/bundle.zip?formats=md,csv")
    names = zipfile.ZipFile(io.BytesIO(resp.data)).namelist()
    assert sorted(names) == ["offer-fields.csv", "offer.md"]

import json

from fastapi.testclient import TestClient

from csv_compare.config import Settings
from csv_compare.main import app, create_app

client = TestClient(app)

FILE1 = "id,email\n1,a@x.com\n2,b@x.com\n"
FILE2 = "id,mail\n9,A@X.com\n"
RULES = [{"name": "email-match", "column1": "email", "column2": "mail"}]


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "healthy"
    assert data["timestamp"]


def test_compare_end_to_end():
    r = client.post("/api/compare", json={"file1Data": FILE1, "file2Data": FILE2, "comparisonRules": RULES})
    assert r.status_code == 200

    data = r.json()
    assert data["matches"] == [{
        "file1Row": 0,
        "file2Row": 0,
        "matchedOn": "email-match",
        "column1": "email",
        "column2": "mail",
        "value": "a@x.com",
        "file1Data": {"id": "1", "email": "a@x.com"},
        "file2Data": {"id": "9", "mail": "A@X.com"},
    }]
    assert data["missingInFile1"] == [{"rowIndex": 1, "data": {"id": "2", "email": "b@x.com"}}]
    assert data["statistics"] == {
        "file1TotalRows": 2,
        "file2TotalRows": 1,
        "matchesFound": 1,
        "missingInFile1": 1,
        "matchRate": 50.0,
    }
    assert data["file1Headers"] == ["id", "email"]
    assert data["file2Headers"] == ["id", "mail"]
    assert data["warnings"] == {"file1": [], "file2": []}


def test_compare_reports_parse_warnings():
    r = client.post(
        "/api/compare",
        json={"file1Data": "id,email\n1\n", "file2Data": FILE2, "comparisonRules": RULES},
    )
    assert r.status_code == 200
    warnings = r.json()["warnings"]["file1"]
    assert [w["issue"] for w in warnings] == ["row_too_short"]


def test_compare_requires_both_files():
    r = client.post("/api/compare", json={"file1Data": FILE1, "comparisonRules": RULES})
    assert r.status_code == 400
    assert r.json()["error"] == "Missing required data for comparison"


def test_compare_requires_a_rule():
    r = client.post("/api/compare", json={"file1Data": FILE1, "file2Data": FILE2, "comparisonRules": []})
    assert r.status_code == 400
    assert r.json()["error"] == "At least one comparison rule is required"


def test_compare_rejects_malformed_rule():
    r = client.post(
        "/api/compare",
        json={"file1Data": FILE1, "file2Data": FILE2, "comparisonRules": [{"name": "x", "column1": "email"}]},
    )
    assert r.status_code == 400


def test_compare_unterminated_quote():
    r = client.post(
        "/api/compare",
        json={"file1Data": 'id,"email\n1,a@x.com\n', "file2Data": FILE2, "comparisonRules": RULES},
    )
    assert r.status_code == 422


def test_compare_accepts_large_cell():
    notes = "n" * 140000
    r = client.post(
        "/api/compare",
        json={"file1Data": f"id,email,notes\n1,a@x.com,{notes}\n", "file2Data": FILE2, "comparisonRules": RULES},
    )
    assert r.status_code == 200
    assert r.json()["matches"][0]["file1Data"]["notes"] == notes


def test_preview():
    r = client.post("/api/preview", json={"csvData": "id,email\n1,a\n2,b\n3,c\n", "maxRows": 1})
    assert r.status_code == 200
    assert r.json() == {"headers": ["id", "email"], "sampleRows": [{"id": "1", "email": "a"}], "totalRows": 3}


def test_preview_requires_data():
    r = client.post("/api/preview", json={})
    assert r.status_code == 400


def test_export():
    r = client.post(
        "/api/export",
        json={"data": [{"email": "a@x.com", "id": "1"}, {"id": "2"}], "headers": ["id", "email"], "filename": "../missing"},
    )
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert r.headers["content-disposition"] == 'attachment; filename="missing.csv"'
    assert r.text == "id,email\r\n1,a@x.com\r\n2,\r\n"


def test_export_default_filename():
    r = client.post("/api/export", json={"data": [], "headers": ["id"]})
    assert r.status_code == 200
    assert r.headers["content-disposition"] == 'attachment; filename="export.csv"'


def test_export_requires_headers():
    r = client.post("/api/export", json={"data": []})
    assert r.status_code == 400


def test_upload_decodes_to_text():
    # Include a Latin-1 character to force non-ASCII handling
    raw = "name,city\nPaul,Montréal\n".encode("latin-1")

    files = {
        "file1": ("first.csv", raw, "text/csv"),
        "file2": ("second.csv", FILE2.encode("utf-8"), "text/csv"),
    }
    r = client.post("/api/upload", files=files)
    assert r.status_code == 200

    data = r.json()
    assert data["success"] is True
    assert data["files"]["file1"]["name"] == "first.csv"
    assert data["files"]["file1"]["size"] == len(raw)
    assert "Montréal" in data["files"]["file1"]["data"]
    assert data["files"]["file2"]["data"] == FILE2


def test_upload_requires_both_files():
    files = {"file1": ("first.csv", FILE1.encode("utf-8"), "text/csv")}
    r = client.post("/api/upload", files=files)
    assert r.status_code == 400


def test_upload_rejects_non_csv():
    files = {
        "file1": ("first.txt", FILE1.encode("utf-8"), "text/plain"),
        "file2": ("second.csv", FILE2.encode("utf-8"), "text/csv"),
    }
    r = client.post("/api/upload", files=files)
    assert r.status_code == 422


def test_size_limits():
    small = TestClient(create_app(Settings(_env_file=None, MAX_UPLOAD_BYTES=16, MAX_REQUEST_BYTES=1024)))

    files = {
        "file1": ("first.csv", FILE1.encode("utf-8") * 4, "text/csv"),
        "file2": ("second.csv", FILE2.encode("utf-8"), "text/csv"),
    }
    r = small.post("/api/upload", files=files)
    assert r.status_code == 413

    r = small.post("/api/compare", json={"file1Data": FILE1 * 100, "file2Data": FILE2, "comparisonRules": RULES})
    assert r.status_code == 413


def test_size_limit_applies_to_chunked_body():
    small = TestClient(create_app(Settings(_env_file=None, MAX_UPLOAD_BYTES=16, MAX_REQUEST_BYTES=1024)))
    body = json.dumps({"file1Data": FILE1 * 100, "file2Data": FILE2, "comparisonRules": RULES}).encode("utf-8")

    def chunks():
        for start in range(0, len(body), 256):
            yield body[start:start + 256]

    r = small.post("/api/compare", content=chunks(), headers={"content-type": "application/json"})
    assert r.status_code == 413


def test_chunked_body_under_limit_is_processed():
    body = json.dumps({"file1Data": FILE1, "file2Data": FILE2, "comparisonRules": RULES}).encode("utf-8")

    def chunks():
        for start in range(0, len(body), 16):
            yield body[start:start + 16]

    r = client.post("/api/compare", content=chunks(), headers={"content-type": "application/json"})
    assert r.status_code == 200
    assert r.json()["statistics"]["matchesFound"] == 1


def test_rejected_body_keeps_cors_headers():
    small = TestClient(create_app(Settings(_env_file=None, MAX_UPLOAD_BYTES=16, MAX_REQUEST_BYTES=1024)))

    r = small.post(
        "/api/compare",
        json={"file1Data": FILE1 * 100, "file2Data": FILE2, "comparisonRules": RULES},
        headers={"Origin": "http://localhost:5173"},
    )
    assert r.status_code == 413
    assert r.headers["access-control-allow-origin"] == "*"

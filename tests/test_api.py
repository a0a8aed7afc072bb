import pytest
from fastapi.testclient import TestClient

from care_records.config import Settings
from care_records.pipeline import CareRecordPipeline
from conftest import FakeGenerator, make_workbook
from main import XLSX_MEDIA_TYPE, app, get_pipeline


@pytest.fixture
def client():
    settings = Settings(api_key="test-key-0123456789", model_name="gemini-test", max_upload_mb=1)
    pipeline = CareRecordPipeline(settings, generator_factory=lambda s: FakeGenerator())
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_api_info(client):
    response = client.get("/api")

    assert response.status_code == 200
    assert "summarize_merge" in response.json()["modes"]


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["api_key_configured"] is True
    assert body["model"] == "gemini-test"


def test_process_returns_workbook(client, structured_workbook):
    response = client.post(
        "/process",
        files=[("files", ("records.xlsx", structured_workbook, XLSX_MEDIA_TYPE))],
        data={"mode": "summarize"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == XLSX_MEDIA_TYPE
    assert "filename*=UTF-8''" in response.headers["content-disposition"]
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    assert response.headers["x-persons-processed"] == "5"


def test_process_merge_mode(client):
    first = make_workbook({"A様": [["good appetite, slept well"]]})
    second = make_workbook({"A様": [["mild cough, otherwise stable"]]})

    response = client.post(
        "/process",
        files=[
            ("files", ("file1.xlsx", first, XLSX_MEDIA_TYPE)),
            ("files", ("file2.xlsx", second, XLSX_MEDIA_TYPE)),
        ],
        data={"mode": "merge"},
    )

    assert response.status_code == 200
    assert response.headers["x-persons-processed"] == "1"


def test_unknown_mode_is_rejected(client, structured_workbook):
    response = client.post(
        "/process",
        files=[("files", ("records.xlsx", structured_workbook, XLSX_MEDIA_TYPE))],
        data={"mode": "translate"},
    )

    assert response.status_code == 400


def test_unsupported_file_type_is_rejected(client):
    response = client.post("/process", files=[("files", ("notes.txt", b"hello", "text/plain"))])

    assert response.status_code == 400


def test_unreadable_workbook_is_a_client_error(client):
    response = client.post(
        "/process",
        files=[("files", ("broken.xlsx", b"junk", XLSX_MEDIA_TYPE))],
        data={"mode": "summarize"},
    )

    assert response.status_code == 400
    assert "Excel" in response.json()["detail"]


def test_zero_concurrency_is_rejected(client, structured_workbook):
    response = client.post(
        "/process",
        files=[("files", ("records.xlsx", structured_workbook, XLSX_MEDIA_TYPE))],
        data={"mode": "summarize", "concurrency": "0"},
    )

    assert response.status_code == 400


def test_oversized_upload_is_rejected(client):
    response = client.post(
        "/process",
        files=[("files", ("big.xlsx", b"0" * (1024 * 1024 + 1), XLSX_MEDIA_TYPE))],
    )

    assert response.status_code == 413


def test_legacy_upload_requires_pdf(client, structured_workbook):
    response = client.post("/upload", files={"file": ("records.xlsx", structured_workbook, XLSX_MEDIA_TYPE)})

    assert response.status_code == 400

"""
test_document_api.py — TestClient checks for the document and document AI routes.

Tests cover:
  - /extract: no-keys body, per-page merge, empty documents, Gemini PDF fallback
  - /verify: unparseable replies, correction mapping and used_model
  - /cross-reference without stored lots
  - /analyze-pos plan number and general easement collection
  - upload / delete keeping the stored file and the row consistent

The database is the FakeSession from conftest; vision calls, document reads
and page rendering are monkeypatched so no provider is ever contacted.
"""

import json

import pytest

from app.api import document_routes, extraction_routes
from app.api.deps import get_permissions
from app.api.extraction_routes import NO_KEYS_SUMMARY
from app.models.orm_models import Document
from app.services import document_store
from app.services.llm_client import VisionResult
from app.services.permissions import master_permissions


def _as(perms):
    async def override():
        return perms
    return override


def _reply(content):
    return VisionResult(content=content, provider="gemini", model_label="Gemini 2.0 Flash")


def _vision_by_image(replies, prompts=None):
    """Fake complete_with_vision answering from a {image_b64: reply text} map."""
    async def fake(prompt, image_b64, **kwargs):
        if prompts is not None:
            prompts.append(prompt)
        return _reply(replies[image_b64])
    return fake


@pytest.fixture(autouse=True)
def _master(api_client):
    from app.main import app
    app.dependency_overrides[get_permissions] = _as(master_permissions(1))


@pytest.fixture
def stored_document(fake_db, monkeypatch):
    """Register document 1 and serve `content` as its bytes."""
    def make(mime_type="application/pdf", original_name="plan.pdf", content=b"img"):
        doc = fake_db.put(Document(
            id=1, entity_type="stage", entity_id=4, filename="0a1b.pdf",
            original_name=original_name, mime_type=mime_type, size=len(content),
        ))

        async def read(filename):
            return content
        monkeypatch.setattr(extraction_routes, "read_document_bytes", read)
        return doc
    return make


def _pages(*images):
    def render(data, max_pages=None):
        return [(n, img) for n, img in enumerate(images, start=1)][:max_pages]
    return render


# ===========================================================================
# Extraction
# ===========================================================================

class TestExtract:

    def test_no_keys_body_is_stored(self, api_client, no_vision_keys, stored_document):
        doc = stored_document(mime_type="image/png", original_name="plan.png")
        response = api_client.post("/api/documents/extract", json={"document_id": 1})
        assert response.status_code == 200
        assert response.json() == {"lots": [], "summary": NO_KEYS_SUMMARY, "page_count": 1}
        assert json.loads(doc.extracted_data) == {"lots": [], "summary": NO_KEYS_SUMMARY}
        assert doc.ai_processed is not None

    def test_missing_document_is_404(self, api_client, fake_db):
        response = api_client.post("/api/documents/extract", json={"document_id": 42})
        assert response.status_code == 404
        assert response.json()["detail"] == "Document not found"

    def test_pages_are_merged(self, api_client, no_vision_keys, stored_document, tiny_pdf, monkeypatch):
        no_vision_keys.setenv("GEMINI_API_KEY", "g")
        stored_document(content=tiny_pdf)
        monkeypatch.setattr(extraction_routes, "render_pages", _pages("p1", "p2", "p3"))
        monkeypatch.setattr(extraction_routes, "complete_with_vision", _vision_by_image({
            "p1": '{"lots": [{"lotNumber": "101"}, {"lotNumber": "102", "area": "450"}]}',
            "p2": '{"lots": [{"lotNumber": "102", "area": "999"}, {"lotNumber": "103"}]}',
            "p3": '{"lots": []}',
        }))

        response = api_client.post("/api/documents/extract", json={"document_id": 1})
        assert response.status_code == 200
        body = response.json()
        assert [lot["lotNumber"] for lot in body["lots"]] == ["101", "102", "103"]
        assert body["lots"][1]["area"] == "450"
        assert body["summary"] == "Found 3 lots (from 2 pages)"
        assert body["page_count"] == 3

    def test_no_data_on_any_page(self, api_client, no_vision_keys, stored_document, tiny_pdf, monkeypatch):
        no_vision_keys.setenv("GEMINI_API_KEY", "g")
        stored_document(content=tiny_pdf)
        monkeypatch.setattr(extraction_routes, "render_pages", _pages("p1", "p2"))
        monkeypatch.setattr(extraction_routes, "complete_with_vision", _vision_by_image({
            "p1": '{"lots": []}',
            "p2": "nothing legible",
        }))

        response = api_client.post("/api/documents/extract", json={"document_id": 1})
        assert response.json() == {
            "lots": [], "stages": [], "summary": "No data found in document", "page_count": 3,
        }

    def test_render_failure_falls_back_to_pdf_direct(
        self, api_client, no_vision_keys, stored_document, tiny_pdf, monkeypatch,
    ):
        no_vision_keys.setenv("GEMINI_API_KEY", "g")
        stored_document(content=tiny_pdf)
        sent = {}

        def broken(data, max_pages=None):
            raise RuntimeError("cannot render page")

        async def fake_pdf(prompt, pdf_b64, **kwargs):
            sent["prompt"] = prompt
            return _reply('{"lots": [{"lotNumber": "7"}], "summary": "Found 1 lots"}')

        monkeypatch.setattr(extraction_routes, "render_pages", broken)
        monkeypatch.setattr(extraction_routes, "complete_with_pdf", fake_pdf)
        response = api_client.post(
            "/api/documents/extract", json={"document_id": 1, "hints": "Lots start at 7"},
        )
        body = response.json()
        assert body["lots"] == [{"lotNumber": "7"}]
        assert body["summary"] == "Found 1 lots [Gemini PDF direct]"
        assert body["page_count"] == 1
        assert "Lots start at 7" in sent["prompt"]


# ===========================================================================
# Verification
# ===========================================================================

class TestVerify:

    def test_unparseable_reply_echoes_image(self, api_client, fake_db, no_vision_keys, monkeypatch):
        no_vision_keys.setenv("GEMINI_API_KEY", "g")
        monkeypatch.setattr(extraction_routes, "complete_with_vision", _vision_by_image({
            "aW1n": "I could not read the plan",
        }))
        response = api_client.post("/api/documents/verify", json={
            "captured_image": "data:image/png;base64,aW1n",
            "return_image": True,
        })
        assert response.status_code == 200
        assert response.json() == {
            "error": "Could not parse AI response",
            "raw": "I could not read the plan",
            "corrections": [],
            "lots_found": [],
            "new_lots": [],
            "image_base64": "aW1n",
        }

    def test_corrections_mapped_to_stored_lots(self, api_client, fake_db, stored_lots, monkeypatch):
        prompts = []
        reply = {
            "corrections": [
                {"lotNumber": "101", "field": "area", "correctValue": "452"},
                {"lotNumber": "999", "field": "area", "correctValue": "1"},
            ],
            "lotsFound": [],
        }
        monkeypatch.setattr(extraction_routes, "complete_with_vision", _vision_by_image(
            {"aW1n": json.dumps(reply)}, prompts,
        ))
        response = api_client.post("/api/documents/verify", json={
            "captured_image": "aW1n",
            "phase": "final",
            "existing_lots": stored_lots,
        })
        body = response.json()
        assert body["used_model"] == "Gemini 2.0 Flash"
        assert len(body["corrections"]) == 1
        correction = body["corrections"][0]
        assert correction["lot_id"] == 1
        assert correction["new_value"] == "452"
        assert correction["current_value"] == "450.00"
        assert "image_base64" not in body
        assert "Lot 101: area=450.00" in prompts[0]

    def test_non_pdf_document_without_screenshot(self, api_client, stored_document):
        stored_document(mime_type="image/png", original_name="plan.png")
        response = api_client.post("/api/documents/verify", json={"document_id": 1})
        assert response.status_code == 400
        assert response.json()["detail"] == "Document must be a PDF or provide a screenshot"


# ===========================================================================
# Cross-reference and POS analysis
# ===========================================================================

class TestCrossReference:

    @pytest.mark.parametrize("target", [{}, {"entity_type": "stage", "entity_id": 4}])
    def test_no_stored_lots_is_400(self, api_client, stored_document, target):
        stored_document()
        response = api_client.post("/api/documents/cross-reference", json={"document_id": 1, **target})
        assert response.status_code == 400
        assert response.json()["detail"] == (
            "No existing lots to compare against. Extract from Permit Plan first."
        )


class TestAnalyzePos:

    def test_requires_gemini(self, api_client, no_vision_keys, stored_document):
        no_vision_keys.setenv("OPENAI_API_KEY", "o")
        stored_document()
        response = api_client.post("/api/documents/analyze-pos", json={"document_id": 1})
        assert response.status_code == 500
        assert response.json()["detail"] == "GEMINI_API_KEY not configured"

    def test_plan_number_and_easements_collected(
        self, api_client, no_vision_keys, stored_document, tiny_pdf, monkeypatch,
    ):
        no_vision_keys.setenv("GEMINI_API_KEY", "g")
        stored_document(content=tiny_pdf)
        monkeypatch.setattr(extraction_routes, "render_pages", _pages("p1", "p2"))
        monkeypatch.setattr(extraction_routes, "complete_with_vision", _vision_by_image({
            "p1": json.dumps({
                "psNumber": "PS812345",
                "generalEasements": [{"id": "E-1", "purpose": "Drainage"}],
                "lotsAnalyzed": [{"lotNumber": "201", "area": "450", "easements": []}],
            }),
            "p2": json.dumps({
                "psNumber": "PS000000",
                "generalEasements": [{"id": "E-2", "purpose": "Sewerage"}],
                "lotsAnalyzed": [{"lotNumber": "201", "easements": ["E-2"]}],
            }),
        }))

        response = api_client.post("/api/documents/analyze-pos", json={"document_id": 1})
        assert response.status_code == 200
        body = response.json()
        assert body["ps_number"] == "PS812345"
        assert [e["id"] for e in body["general_easements"]] == ["E-1", "E-2"]
        assert body["comparisons"] == []
        assert body["new_lots_found"] == [{"lotNumber": "201", "easements": ["E-2"]}]


# ===========================================================================
# Upload and delete
# ===========================================================================

class TestDocumentFiles:

    @pytest.fixture(autouse=True)
    def _upload_dir(self, tmp_path, monkeypatch):
        monkeypatch.setattr(document_store, "UPLOAD_DIR", str(tmp_path))

    def _upload(self, api_client):
        return api_client.post(
            "/api/documents",
            files={"file": ("plan.pdf", b"%PDF-1.4", "application/pdf")},
            data={"entity_type": "stage", "entity_id": "3"},
        )

    def test_upload_stores_file_and_row(self, api_client, fake_db, tmp_path):
        response = self._upload(api_client)
        assert response.status_code == 201
        body = response.json()
        assert body["original_name"] == "plan.pdf"
        assert body["mime_type"] == "application/pdf"
        assert body["size"] == 8
        assert body["document_type"] == "other"
        assert (tmp_path / body["filename"]).read_bytes() == b"%PDF-1.4"

    def test_failed_insert_removes_saved_file(self, api_client, fake_db, tmp_path):
        fake_db.flush_error = RuntimeError("insert failed")
        with pytest.raises(RuntimeError):
            self._upload(api_client)
        assert list(tmp_path.iterdir()) == []

    def test_missing_fields(self, api_client, fake_db):
        response = api_client.post("/api/documents", data={"entity_type": "stage"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing required fields"

    def test_delete_removes_file_after_row(self, api_client, fake_db, monkeypatch):
        fake_db.put(Document(id=1, entity_type="stage", entity_id=3, filename="0a1b.pdf",
                             original_name="plan.pdf", mime_type="application/pdf", size=8))
        monkeypatch.setattr(document_routes, "delete_stored_file", lambda name: fake_db.events.append("unlink"))

        response = api_client.request("DELETE", "/api/documents", json={"id": 1})
        assert response.status_code == 200
        events = fake_db.events
        assert events.index("delete") < events.index("flush") < events.index("unlink")

    def test_failed_row_delete_keeps_file(self, api_client, fake_db, tmp_path):
        (tmp_path / "0a1b.pdf").write_bytes(b"%PDF-1.4")
        fake_db.put(Document(id=1, entity_type="stage", entity_id=3, filename="0a1b.pdf",
                             original_name="plan.pdf", mime_type="application/pdf", size=8))
        fake_db.flush_error = RuntimeError("delete failed")
        with pytest.raises(RuntimeError):
            api_client.request("DELETE", "/api/documents", json={"id": 1})
        assert (tmp_path / "0a1b.pdf").exists()

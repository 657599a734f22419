"""
Tests for the Kie.ai client: status mapping, submission and retry.
"""

import pytest
import requests

from studio import kie


class FakeResponse:
    def __init__(self, status_code=200, body=None, headers=None):
        self.status_code = status_code
        self._body = body or {}
        self.headers = headers or {}

    def json(self):
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")


class TestParseTaskStatus:
    def test_success_with_result_urls(self):
        status = kie.parse_task_status({
            "data": {"successFlag": 1, "response": {"resultUrls": ["https://cdn.test/v.mp4"]}},
        })
        assert status.status == "completed"
        assert status.video_url == "https://cdn.test/v.mp4"
        assert status.progress == 100

    def test_success_without_url_is_failure(self):
        status = kie.parse_task_status({"data": {"status": "SUCCESS"}})
        assert status.status == "failed"
        assert "no video URL" in status.error

    @pytest.mark.parametrize("data", [
        {"status": "GENERATE_FAILED", "errorMessage": "blocked"},
        {"successFlag": 2, "errorMessage": "blocked"},
        {"successFlag": 3, "errorMessage": "blocked"},
    ])
    def test_failure_indicators(self, data):
        status = kie.parse_task_status({"data": data})
        assert status.status == "failed"
        assert status.error == "blocked"

    def test_queued_and_generating(self):
        assert kie.parse_task_status({"data": {"status": "PENDING"}}).status == "queued"
        generating = kie.parse_task_status({"data": {"successFlag": 0, "progress": "62.5"}})
        assert generating.status == "generating"
        assert generating.progress == 62

    def test_missing_data(self):
        assert kie.parse_task_status({}).status == "generating"

    def test_results_array(self):
        status = kie.parse_task_status({
            "data": {"status": "SUCCESS", "works": [{"videoUrl": "https://cdn.test/w.mp4"}]},
        })
        assert status.video_url == "https://cdn.test/w.mp4"


class TestSubmitSceneVideo:
    def test_reference_mode_payload(self, monkeypatch):
        sent = {}

        def fake_request(method, url, **kwargs):
            sent.update(method=method, url=url, **kwargs)
            return FakeResponse(body={"code": 200, "data": {"taskId": "abc123"}})

        monkeypatch.setattr(kie, "_request_with_backoff", fake_request)
        task_id = kie.submit_scene_video("A creator smiles", "https://cdn.test/scene.png")

        assert task_id == "abc123"
        assert sent["method"] == "POST"
        assert sent["url"].endswith("/veo/generate")
        assert sent["json"]["mode"] == "REFERENCE_2_VIDEO"
        assert sent["json"]["imageUrls"] == ["https://cdn.test/scene.png"]
        assert sent["json"]["aspectRatio"] == "9:16"

    def test_no_task_id(self, monkeypatch):
        monkeypatch.setattr(
            kie, "_request_with_backoff",
            lambda *a, **kw: FakeResponse(body={"code": 422, "msg": "bad image", "data": None}),
        )
        with pytest.raises(RuntimeError, match="bad image"):
            kie.submit_scene_video("prompt", "https://cdn.test/scene.png")


class TestRequestWithBackoff:
    def test_retries_on_503(self, monkeypatch):
        responses = [FakeResponse(503), FakeResponse(200, {"ok": True})]
        monkeypatch.setattr(kie.requests, "request", lambda *a, **kw: responses.pop(0))
        monkeypatch.setattr(kie.time, "sleep", lambda s: None)

        assert kie._request_with_backoff("GET", "https://api.test/x").json() == {"ok": True}
        assert responses == []

    def test_client_error_not_retried(self, monkeypatch):
        calls = []

        def fake(*a, **kw):
            calls.append(1)
            return FakeResponse(400)

        monkeypatch.setattr(kie.requests, "request", fake)
        monkeypatch.setattr(kie.time, "sleep", lambda s: None)

        with pytest.raises(requests.exceptions.HTTPError):
            kie._request_with_backoff("GET", "https://api.test/x")
        assert len(calls) == 1

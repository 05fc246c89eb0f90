"""
Unit tests for the FastAPI application.

Tests the upload and health endpoints, exception handlers and CORS with
the transcription service mocked out.
"""

import asyncio
import logging
import threading
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

import app.main as main_module
from app.errors import NonZeroExitError, RuntimeNotFoundError
from app.main import app, stop_watcher, watch_disconnect

client = TestClient(app)


@pytest.fixture
def mock_service():
    """Replace the global transcription service with a mock."""
    service = Mock()
    service.transcribe.return_value = {"text": "hello", "segments": []}
    with patch("app.main.transcription_service", service):
        yield service


def upload(filename="meeting.mp3", content=b"audio-bytes", **data):
    return client.post(
        "/api/transcribe",
        files={"mediaFile": (filename, content, "audio/mpeg")},
        data=data
    )


class TestTranscribeEndpoint:
    """Tests for POST /api/transcribe."""

    def test_success_wraps_document(self, mock_service):
        """Test that the engine document is returned under 'transcription'."""
        response = upload()

        assert response.status_code == 200
        assert response.json() == {"transcription": {"text": "hello", "segments": []}}

    def test_document_passed_through_verbatim(self, mock_service):
        """Test that non-object documents are not reshaped."""
        mock_service.transcribe.return_value = [{"speaker": "SPEAKER_01", "extra": {"k": None}}]

        response = upload()

        assert response.json()["transcription"] == [{"speaker": "SPEAKER_01", "extra": {"k": None}}]

    def test_service_receives_upload(self, mock_service):
        """Test that filename, bytes and a cancel event reach the service."""
        upload(filename='my "talk".wav', content=b"payload")

        args = mock_service.transcribe.call_args.args
        assert args[0] == 'my "talk".wav'
        assert args[1] == b"payload"
        assert args[2] is False
        assert isinstance(args[3], threading.Event)

    def test_diarize_true(self, mock_service):
        """Test that diarize=true enables diarization."""
        upload(diarize="true")

        assert mock_service.transcribe.call_args.args[2] is True

    @pytest.mark.parametrize("value", ["True", "1", "yes", "false", ""])
    def test_other_diarize_values_disable_diarization(self, mock_service, value):
        """Test that only the exact string 'true' enables diarization."""
        upload(diarize=value)

        assert mock_service.transcribe.call_args.args[2] is False

    def test_missing_file_returns_400(self, mock_service):
        """Test that a request without mediaFile is rejected before any work."""
        response = client.post("/api/transcribe", data={"diarize": "true"})

        assert response.status_code == 400
        assert response.json()["error"] == "No media file uploaded"
        mock_service.transcribe.assert_not_called()

    def test_wrong_field_name_returns_400(self, mock_service):
        """Test that a file under another field name is not accepted."""
        response = client.post(
            "/api/transcribe",
            files={"file": ("meeting.mp3", b"x", "audio/mpeg")}
        )

        assert response.status_code == 400
        mock_service.transcribe.assert_not_called()

    def test_upload_too_large_returns_413(self, mock_service, monkeypatch):
        """Test that uploads over the size limit are rejected."""
        monkeypatch.setattr(main_module, "MAX_UPLOAD_SIZE_BYTES", 8)

        response = upload(content=b"0123456789")

        assert response.status_code == 413
        assert "File size exceeds maximum limit" in response.json()["error"]
        mock_service.transcribe.assert_not_called()

    def test_job_error_returns_status_and_details(self, mock_service):
        """Test that pipeline errors become flat error bodies."""
        mock_service.transcribe.side_effect = NonZeroExitError(
            details="CUDA out of memory\nPartial output: {\"segments\": ["
        )

        response = upload()

        assert response.status_code == 500
        assert response.json() == {
            "error": "Failed to execute transcription script.",
            "details": "CUDA out of memory\nPartial output: {\"segments\": [",
        }

    def test_runtime_not_found_returns_500(self, mock_service):
        """Test the response when no interpreter is available."""
        mock_service.transcribe.side_effect = RuntimeNotFoundError()

        response = upload()

        assert response.status_code == 500
        assert response.json()["error"] == "Python executable not found."

    def test_unexpected_error_returns_500(self, mock_service):
        """Test that unexpected exceptions use the generic error body."""
        mock_service.transcribe.side_effect = RuntimeError("disk on fire")
        lenient_client = TestClient(app, raise_server_exceptions=False)

        response = lenient_client.post(
            "/api/transcribe",
            files={"mediaFile": ("meeting.mp3", b"x", "audio/mpeg")}
        )

        assert response.status_code == 500
        assert response.json()["error"] == "An unexpected error occurred."


class TestHealthEndpoint:
    """Tests for GET /api/health."""

    def test_healthy(self, mock_service):
        """Test that a found runtime and script report healthy."""
        mock_service.check_health.return_value = {"runtime": "python3", "worker_script_found": True}

        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "runtime": "python3", "worker_script_found": True}

    def test_degraded_without_runtime(self, mock_service):
        """Test that a missing runtime reports degraded."""
        mock_service.check_health.return_value = {"runtime": None, "worker_script_found": True}

        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_degraded_without_script(self, mock_service):
        """Test that a missing engine script reports degraded."""
        mock_service.check_health.return_value = {"runtime": "python3", "worker_script_found": False}

        assert client.get("/api/health").json()["status"] == "degraded"


class TestCORSConfiguration:
    """Test CORS middleware configuration."""

    def test_cors_allows_all_origins(self, mock_service):
        """Test that CORS allows requests from any origin."""
        mock_service.check_health.return_value = {"runtime": "python3", "worker_script_found": True}

        response = client.get("/api/health", headers={"Origin": "http://localhost:3000"})

        assert response.headers["access-control-allow-origin"] == "*"

    def test_cors_preflight_for_upload(self):
        """Test that browsers may POST uploads cross-origin."""
        response = client.options(
            "/api/transcribe",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST"
            }
        )

        assert response.status_code == 200
        assert "access-control-allow-methods" in response.headers


class TestApiDocumentation:
    """Test the generated OpenAPI schema."""

    def test_endpoints_documented(self):
        """Test that both endpoints appear in the schema."""
        schema = client.get("/openapi.json").json()

        assert "post" in schema["paths"]["/api/transcribe"]
        assert "get" in schema["paths"]["/api/health"]

    def test_error_responses_documented(self):
        """Test that the upload endpoint documents its error codes."""
        responses = client.get("/openapi.json").json()["paths"]["/api/transcribe"]["post"]["responses"]

        assert {"200", "400", "413", "500"} <= set(responses)


class FakeRequest:
    """Stands in for a Request whose client disconnects after a few polls."""

    class url:
        path = "/api/transcribe"

    def __init__(self, disconnect_after):
        self.disconnect_after = disconnect_after
        self.polls = 0

    async def is_disconnected(self):
        self.polls += 1
        return self.polls > self.disconnect_after


class TestWatchDisconnect:
    """Tests for the client disconnect watcher."""

    def test_sets_cancel_event_on_disconnect(self, monkeypatch):
        """Test that a disconnect sets the cancel event."""
        monkeypatch.setattr(main_module, "DISCONNECT_POLL_SECONDS", 0)
        request = FakeRequest(disconnect_after=2)
        cancel_event = threading.Event()

        asyncio.run(watch_disconnect(request, cancel_event))

        assert cancel_event.is_set()
        assert request.polls == 3

    def test_stops_when_job_already_cancelled(self):
        """Test that the watcher returns immediately for a set event."""
        request = FakeRequest(disconnect_after=100)
        cancel_event = threading.Event()
        cancel_event.set()

        asyncio.run(watch_disconnect(request, cancel_event))

        assert request.polls == 0

    def test_watcher_failure_is_logged_and_request_succeeds(self, mock_service, caplog):
        """Test that a failing watcher does not break the request or go unreported."""
        async def failing_watcher(request, cancel_event):
            raise RuntimeError("receive channel broken")

        with patch("app.main.watch_disconnect", failing_watcher):
            with caplog.at_level(logging.WARNING, logger="app.main"):
                response = upload()

        assert response.status_code == 200
        failures = [r for r in caplog.records if r.getMessage() == "Disconnect watcher failed"]
        assert len(failures) == 1
        assert failures[0].error_message == "receive channel broken"

    def test_stop_watcher_absorbs_cancellation(self):
        """Test that stopping a still-running watcher returns cleanly."""
        async def scenario():
            task = asyncio.create_task(asyncio.sleep(60))
            await asyncio.sleep(0)
            task.cancel()
            await stop_watcher(task)
            return task.cancelled()

        assert asyncio.run(scenario()) is True

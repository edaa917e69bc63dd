"""Tests for the alerts REST client (multipart submission and history listing)."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from src.models.alert import MediaReference
from src.models.errors import (
    HistoryUnavailableError,
    InvalidDraftError,
    MediaUnavailableError,
    SubmissionRejectedError,
    TransportFailureError,
)
from src.services.alert_client import AlertSubmissionClient
from tests.fakes import make_draft

BASE_URL = "https://alerts.test/api"


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> AlertSubmissionClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AlertSubmissionClient(BASE_URL, http_client=http)


class _Recorder:
    """MockTransport handler that stores requests and replays one response."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


# -----------------------------------------------------------------------
# Submission
# -----------------------------------------------------------------------


class TestSubmit:
    async def test_success_returns_receipt(self) -> None:
        recorder = _Recorder(httpx.Response(201, json={"success": True, "id": 42}))
        client = _client(recorder)

        receipt = await client.submit(make_draft())

        assert receipt.alert_id == "42"
        assert receipt.status_code == 201
        assert len(recorder.requests) == 1, "submit must POST exactly once"

    async def test_200_is_also_success(self) -> None:
        client = _client(_Recorder(httpx.Response(200, json={"success": True, "alert_id": "a-7"})))
        receipt = await client.submit(make_draft())
        assert receipt.alert_id == "a-7"

    async def test_nested_data_id_is_accepted(self) -> None:
        client = _client(
            _Recorder(httpx.Response(201, json={"success": True, "data": {"id": 9}}))
        )
        receipt = await client.submit(make_draft())
        assert receipt.alert_id == "9"

    async def test_posts_multipart_form_with_text_fields(self) -> None:
        recorder = _Recorder(httpx.Response(201, json={"success": True, "id": 1}))
        client = _client(recorder)

        await client.submit(make_draft(message="Smoke on the 3rd floor"))

        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/alerts"
        assert request.headers["content-type"].startswith("multipart/form-data")
        body = request.content
        assert b'name="user_name"\r\n\r\nAna\r\n' in body
        assert b'name="user_phone"\r\n\r\n+551199999999\r\n' in body
        assert b'name="message"\r\n\r\nSmoke on the 3rd floor\r\n' in body
        assert b'name="latitude"\r\n\r\n-23.55\r\n' in body
        assert b'name="longitude"\r\n\r\n-46.63\r\n' in body
        assert 'name="location"\r\n\r\nRua Augusta, São Paulo, SP\r\n'.encode() in body
        assert b"filename=" not in body, "no media part should be sent without attachments"

    async def test_attached_photo_is_sent_as_file_part(self, tmp_path: Path) -> None:
        photo_path = tmp_path / "capture.jpg"
        photo_path.write_bytes(b"\xff\xd8jpeg-bytes")
        recorder = _Recorder(httpx.Response(201, json={"success": True, "id": 1}))
        client = _client(recorder)

        await client.submit(make_draft(photo=MediaReference.photo(f"file://{photo_path}")))

        body = recorder.requests[0].content
        assert b'name="photo"; filename="alert_photo.jpg"' in body
        assert b"Content-Type: image/jpeg" in body
        assert b"\xff\xd8jpeg-bytes" in body

    async def test_audio_and_video_use_fixed_filenames(self, tmp_path: Path) -> None:
        video = tmp_path / "clip.mp4"
        audio = tmp_path / "note.m4a"
        video.write_bytes(b"video")
        audio.write_bytes(b"audio")
        recorder = _Recorder(httpx.Response(201, json={"success": True, "id": 1}))
        client = _client(recorder)

        await client.submit(
            make_draft(
                video=MediaReference.video(str(video), duration_ms=5000),
                audio=MediaReference.audio(str(audio)),
            )
        )

        body = recorder.requests[0].content
        assert b'name="video"; filename="alert_video.mp4"' in body
        assert b'name="audio"; filename="alert_audio.m4a"' in body

    async def test_server_error_keeps_status_and_body(self) -> None:
        client = _client(_Recorder(httpx.Response(500, text='{"error":"db down"}')))

        with pytest.raises(SubmissionRejectedError) as exc_info:
            await client.submit(make_draft())

        assert exc_info.value.status_code == 500
        assert exc_info.value.body == '{"error":"db down"}', "raw body must be preserved"
        assert exc_info.value.error_code == "SUBMISSION_REJECTED"

    async def test_non_json_success_body_is_rejected(self) -> None:
        client = _client(_Recorder(httpx.Response(200, text="<html>ok</html>")))

        with pytest.raises(SubmissionRejectedError) as exc_info:
            await client.submit(make_draft())
        assert exc_info.value.body == "<html>ok</html>"

    async def test_success_false_is_rejected(self) -> None:
        client = _client(_Recorder(httpx.Response(200, json={"success": False, "id": 3})))
        with pytest.raises(SubmissionRejectedError):
            await client.submit(make_draft())

    async def test_missing_identifier_is_rejected(self) -> None:
        client = _client(_Recorder(httpx.Response(201, json={"success": True})))
        with pytest.raises(SubmissionRejectedError):
            await client.submit(make_draft())

    async def test_json_list_body_is_rejected(self) -> None:
        client = _client(_Recorder(httpx.Response(201, json=[{"success": True, "id": 1}])))
        with pytest.raises(SubmissionRejectedError):
            await client.submit(make_draft())

    async def test_connection_error_is_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        with pytest.raises(TransportFailureError) as exc_info:
            await client.submit(make_draft())
        assert exc_info.value.details["error_type"] == "ConnectError"

    async def test_missing_media_file_raises_before_request(self, tmp_path: Path) -> None:
        recorder = _Recorder(httpx.Response(201, json={"success": True, "id": 1}))
        client = _client(recorder)
        missing = tmp_path / "gone.jpg"

        with pytest.raises(MediaUnavailableError) as exc_info:
            await client.submit(make_draft(photo=MediaReference.photo(str(missing))))

        assert exc_info.value.details["kind"] == "photo"
        assert recorder.requests == [], "no request should be sent when media is unreadable"

    async def test_draft_without_location_is_invalid(self) -> None:
        recorder = _Recorder(httpx.Response(201, json={"success": True, "id": 1}))
        client = _client(recorder)

        with pytest.raises(InvalidDraftError) as exc_info:
            await client.submit(make_draft(location=None))

        assert exc_info.value.missing == ["location"]
        assert recorder.requests == []


# -----------------------------------------------------------------------
# History listing
# -----------------------------------------------------------------------


class TestListAlerts:
    async def test_returns_list_body(self) -> None:
        records = [{"id": 1, "user_phone": "+551199999999"}, {"id": 2, "user_phone": "x"}]
        recorder = _Recorder(httpx.Response(200, json=records))
        client = _client(recorder)

        result = await client.list_alerts()

        assert result == records
        assert recorder.requests[0].method == "GET"

    async def test_wrapped_data_key_is_unwrapped(self) -> None:
        client = _client(_Recorder(httpx.Response(200, json={"data": [{"id": 1}]})))
        assert await client.list_alerts() == [{"id": 1}]

    async def test_non_dict_records_are_dropped(self) -> None:
        client = _client(_Recorder(httpx.Response(200, json=[{"id": 1}, "junk", 3])))
        assert await client.list_alerts() == [{"id": 1}]

    async def test_http_error_raises_history_unavailable(self) -> None:
        client = _client(_Recorder(httpx.Response(503, text="maintenance")))
        with pytest.raises(HistoryUnavailableError) as exc_info:
            await client.list_alerts()
        assert exc_info.value.details["status_code"] == 503

    async def test_object_without_list_raises(self) -> None:
        client = _client(_Recorder(httpx.Response(200, json={"error": "nope"})))
        with pytest.raises(HistoryUnavailableError):
            await client.list_alerts()

    async def test_transport_error_is_retried_then_raised(self) -> None:
        attempts: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ConnectError("offline", request=request)

        client = _client(handler)
        with pytest.raises(HistoryUnavailableError):
            await client.list_alerts()
        assert len(attempts) == 3, "history fetch should be attempted three times"

    async def test_transient_transport_error_recovers(self) -> None:
        attempts: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json=[{"id": 5}])

        client = _client(handler)
        assert await client.list_alerts() == [{"id": 5}]
        assert len(attempts) == 2


class TestLifecycle:
    async def test_injected_client_is_not_closed(self) -> None:
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        client = AlertSubmissionClient(BASE_URL, http_client=http)
        await client.close()
        assert not http.is_closed
        await http.aclose()

    async def test_owned_client_is_closed(self) -> None:
        client = AlertSubmissionClient(BASE_URL)
        await client.close()
        assert client._client.is_closed

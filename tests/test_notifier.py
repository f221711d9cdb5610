"""Tests for webhook delivery with bounded exponential backoff."""

import json

import httpx
import pytest

from media_transcoder import __version__
from media_transcoder.jobs import NotificationError, NotificationPayload
from media_transcoder.notifier import WebhookNotifier

URL = "https://hooks.example/transcoder"


def _payload(job_id="job-1"):
    return NotificationPayload(
        job_id=job_id,
        status="completed",
        remote_url="https://drive.example/x",
        remote_id="x",
        original_name="a.mov",
        completed_at="2024-01-01T00:00:00Z",
    )


def _notifier(responses, retry_count=3, backoff_base_s=0.001, deadline_s=5.0):
    """Notifier whose transport answers with ``responses`` in order (last one repeats)."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        status = responses[min(len(requests), len(responses)) - 1]
        if isinstance(status, Exception):
            raise status
        return httpx.Response(status)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    notifier = WebhookNotifier(
        URL,
        retry_count=retry_count,
        backoff_base_s=backoff_base_s,
        deadline_s=deadline_s,
        client=client,
    )
    return notifier, requests


class TestDelivery:
    def test_success_first_try(self):
        notifier, requests = _notifier([200])
        notifier.send(_payload())

        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == URL
        assert request.headers["content-type"] == "application/json"
        assert request.headers["user-agent"] == f"media-transcoder/{__version__}"
        body = json.loads(request.content)
        assert body["job_id"] == "job-1"
        assert body["status"] == "completed"
        assert "error" not in body

    def test_retries_until_success(self):
        notifier, requests = _notifier([500, 503, 200])
        notifier.send(_payload())
        assert len(requests) == 3

    def test_transport_errors_are_retried(self):
        notifier, requests = _notifier([httpx.ConnectError("refused"), 204])
        notifier.send(_payload())
        assert len(requests) == 2

    def test_gives_up_after_retry_count_plus_one(self):
        notifier, requests = _notifier([500], retry_count=2)
        with pytest.raises(NotificationError) as exc_info:
            notifier.send(_payload())

        assert len(requests) == 3
        assert exc_info.value.attempts == 3
        assert "webhook failed after 3 attempts" in str(exc_info.value)

    def test_zero_retries(self):
        notifier, requests = _notifier([500], retry_count=0)
        with pytest.raises(NotificationError):
            notifier.send(_payload())
        assert len(requests) == 1


class TestBackoff:
    def test_backoff_doubles(self):
        notifier = WebhookNotifier(URL, backoff_base_s=1.0, client=httpx.Client())
        assert [notifier.backoff_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_deadline_stops_retries(self):
        notifier, requests = _notifier([500], retry_count=10, backoff_base_s=1.0, deadline_s=0.5)
        with pytest.raises(NotificationError) as exc_info:
            notifier.send(_payload())

        # The first retry would already sleep past the deadline
        assert len(requests) == 1
        assert "deadline" in str(exc_info.value)


class TestDisabled:
    def test_no_url_is_noop(self):
        notifier = WebhookNotifier(None, client=httpx.Client())
        assert not notifier.enabled
        notifier.send(_payload())
        assert notifier.send_async(_payload()) is None

    def test_empty_url_is_noop(self):
        assert not WebhookNotifier("", client=httpx.Client()).enabled


class TestAsync:
    def test_send_async_delivers_in_background(self):
        notifier, requests = _notifier([500, 200])
        thread = notifier.send_async(_payload("job-async"))

        thread.join(timeout=5)
        assert thread.daemon
        assert len(requests) == 2

    def test_send_async_swallows_final_failure(self, caplog):
        notifier, requests = _notifier([500], retry_count=1)
        thread = notifier.send_async(_payload("job-bad"))
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert len(requests) == 2
        assert "job-bad" in caplog.text

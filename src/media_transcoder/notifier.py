"""Webhook notifications for finished jobs.

Delivery is at-least-once and best effort: failed attempts are retried with
exponential backoff (1s, 2s, 4s, ...) inside an overall deadline, and a final
failure is only logged. A job's own status never depends on the webhook.
"""

import logging
import threading
import time
from typing import Optional

import httpx

from . import __version__
from .jobs.errors import NotificationError
from .jobs.models import NotificationPayload

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """POSTs job outcome payloads to a single configured URL.

    Example:
        >>> notifier = WebhookNotifier("https://example.com/hooks/transcoder")
        >>> notifier.send_async(NotificationPayload.from_job(job))
    """

    def __init__(
        self,
        url: Optional[str],
        retry_count: int = 3,
        backoff_base_s: float = 1.0,
        deadline_s: float = 300.0,
        request_timeout_s: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        """Initialize the notifier.

        Args:
            url: Endpoint to notify; None or empty disables notifications
            retry_count: Additional attempts after the first one
            backoff_base_s: Delay before the first retry, doubled each time
            deadline_s: Default ceiling for the whole attempt loop
            request_timeout_s: Per-request timeout
            client: Optional preconfigured httpx client (tests inject a
                MockTransport here)
        """
        self.url = url or None
        self.retry_count = max(0, retry_count)
        self.backoff_base_s = backoff_base_s
        self.deadline_s = deadline_s
        self.request_timeout_s = request_timeout_s
        self._headers = {"User-Agent": f"media-transcoder/{__version__}"}
        self._client = client or httpx.Client()

    @property
    def enabled(self) -> bool:
        return self.url is not None

    def backoff_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return self.backoff_base_s * (2 ** (attempt - 1))

    def send(self, payload: NotificationPayload, deadline_s: Optional[float] = None) -> None:
        """Deliver ``payload``, retrying failed attempts.

        Args:
            payload: Event body
            deadline_s: Ceiling for the whole loop (default: self.deadline_s)

        Raises:
            NotificationError: All attempts failed or the deadline passed
        """
        if not self.enabled:
            logger.debug("No webhook URL configured, skipping notification for job %s", payload.job_id)
            return

        budget = self.deadline_s if deadline_s is None else deadline_s
        deadline = time.monotonic() + budget
        body = payload.to_json_dict()

        last_error: Optional[str] = None
        attempts = 0
        for attempt in range(self.retry_count + 1):
            if attempt > 0:
                backoff = self.backoff_for(attempt)
                if time.monotonic() + backoff >= deadline:
                    raise NotificationError(
                        f"webhook deadline of {budget:.1f}s exceeded after {attempts} attempts: "
                        f"{last_error}",
                        attempts,
                    )
                logger.info(
                    "Webhook retry %d/%d for job %s in %.1fs",
                    attempt, self.retry_count, payload.job_id, backoff,
                )
                time.sleep(backoff)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise NotificationError(
                    f"webhook deadline of {budget:.1f}s exceeded after {attempts} attempts: "
                    f"{last_error}",
                    attempts,
                )

            attempts += 1
            error = self._attempt(body, timeout=min(self.request_timeout_s, remaining))
            if error is None:
                logger.info("Webhook sent successfully for job %s", payload.job_id)
                return

            last_error = error
            logger.warning("Webhook attempt %d failed for job %s: %s", attempts, payload.job_id, error)

        raise NotificationError(
            f"webhook failed after {attempts} attempts: {last_error}", attempts
        )

    def _attempt(self, body: dict, timeout: float) -> Optional[str]:
        """One POST. Returns None on a 2xx response, else a description of the failure."""
        try:
            response = self._client.post(
                self.url, json=body, headers=self._headers, timeout=timeout
            )
        except httpx.HTTPError as e:
            return f"request failed: {e}"
        if response.is_success:
            return None
        return f"webhook returned status {response.status_code}"

    def send_async(self, payload: NotificationPayload) -> Optional[threading.Thread]:
        """Deliver in a detached daemon thread.

        Returns:
            The delivery thread, or None when notifications are disabled
        """
        if not self.enabled:
            logger.debug("No webhook URL configured, skipping notification for job %s", payload.job_id)
            return None

        thread = threading.Thread(
            target=self._send_logged,
            args=(payload,),
            name=f"webhook-{payload.job_id}",
            daemon=True,
        )
        thread.start()
        return thread

    def _send_logged(self, payload: NotificationPayload) -> None:
        try:
            self.send(payload)
        except NotificationError as e:
            logger.error("Async webhook failed for job %s: %s", payload.job_id, e)
        except Exception:
            logger.exception("Unexpected error delivering webhook for job %s", payload.job_id)

    def close(self) -> None:
        self._client.close()

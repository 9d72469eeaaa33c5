"""
Outcome notifier.

Posts the result of a finished refund call to the automation endpoint that
updates the back office.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import anyio
import httpx

from callqueue.queue.models import QueueItem
from callqueue.shared.logging import get_logger
from callqueue.telephony.classifier import CallClassification

logger = get_logger(__name__)


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    skipped: bool = False
    status_code: int | None = None
    error: str | None = None


def build_outcome_payload(item: QueueItem, classification: CallClassification) -> dict[str, Any]:
    """Payload expected by the automation scenario."""
    call_result: dict[str, Any] = {"call_status": classification.call_status.value}
    refund_response = classification.refund_response
    if refund_response:
        call_result["refund_response"] = refund_response

    return {
        "booking": {"backoffice_url": item.payload.get("backoffice_url")},
        "order": {"reference": item.reference},
        "call_result": call_result,
    }


class OutcomeNotifier:
    """Sends call outcomes to the downstream webhook.

    Delivery failures are reported in the returned ``NotificationResult``
    and never raised: the queue transition has already been persisted.
    """

    def __init__(
        self,
        url: str,
        http_client: httpx.Client | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._url = url
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout_seconds = timeout_seconds

    def _get_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=httpx.Timeout(self._timeout_seconds))
        return self._http_client

    def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    async def send(self, item: QueueItem, classification: CallClassification) -> NotificationResult:
        return await anyio.to_thread.run_sync(self.send_sync, item, classification)

    def send_sync(self, item: QueueItem, classification: CallClassification) -> NotificationResult:
        if not item.payload.get("backoffice_url"):
            logger.info("No backoffice_url, outcome not sent", extra={"reference": item.reference})
            return NotificationResult(success=True, skipped=True)
        if not self._url:
            logger.warning("Outcome webhook URL not configured", extra={"reference": item.reference})
            return NotificationResult(success=True, skipped=True)

        payload = build_outcome_payload(item, classification)
        try:
            response = self._get_client().post(self._url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Outcome webhook rejected the notification",
                extra={"reference": item.reference, "status_code": e.response.status_code},
            )
            return NotificationResult(
                success=False,
                status_code=e.response.status_code,
                error=f"HTTP {e.response.status_code}",
            )
        except httpx.HTTPError as e:
            logger.error(
                "Outcome webhook unreachable",
                extra={"reference": item.reference, "error": str(e)},
            )
            return NotificationResult(success=False, error=str(e))

        logger.info(
            "Outcome sent",
            extra={
                "reference": item.reference,
                "call_status": classification.call_status.value,
                "status_code": response.status_code,
            },
        )
        return NotificationResult(success=True, status_code=response.status_code)

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from logdrain import metrics
from logdrain.decoder import decode_payload
from logdrain.delivery_context import new_delivery_id, reset_delivery, set_delivery
from logdrain.errors import QueueClosedError
from logdrain.ingest_queue import IngestionQueue
from logdrain.metrics import COUNTERS, Counters
from logdrain.signature import SignatureVerifier, Verdict

logger = logging.getLogger(__name__)

VERIFY_HEADER = "x-vercel-verify"
SIGNATURE_HEADER = "x-vercel-signature"


@dataclass
class Ack:
    """What the webhook caller gets back. Always a 200, whatever happened downstream."""
    verify_token: str
    verdict: Verdict
    queued: int = 0
    delivery_id: Optional[str] = None

    @property
    def status_code(self) -> int:
        return 200

    def headers(self) -> Dict[str, str]:
        return {VERIFY_HEADER: self.verify_token}


class DeliveryHandler:
    """Authenticate, decode and enqueue one webhook delivery."""

    def __init__(
        self,
        verifier: SignatureVerifier,
        queue: IngestionQueue,
        verify_token: str,
        counters: Counters = COUNTERS,
    ):
        self.verifier = verifier
        self.queue = queue
        self.verify_token = verify_token
        self.counters = counters

    def handle_delivery(self, raw: bytes, signature: Optional[str]) -> Tuple[Ack, int]:
        """
        Returns the acknowledgement and the number of decode failures.

        Nothing here raises to the caller: a rejected, undecodable or
        unqueueable delivery is logged and counted, and still acknowledged,
        because the platform disables a drain that keeps answering non-2xx.
        """
        delivery_id = new_delivery_id()
        token = set_delivery(delivery_id)
        try:
            logger.debug("received payload (%d bytes)", len(raw))
            verdict = self.verifier.verify(raw, signature)
            ack = Ack(verify_token=self.verify_token, verdict=verdict, delivery_id=delivery_id)
            if verdict is not Verdict.OK:
                return ack, 0

            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.error("received bad utf-8: %s", e)
                self.counters.inc(metrics.BAD_UTF8)
                return ack, 0

            try:
                failures = self._decode_and_enqueue(text, ack)
            except Exception:
                # still an authenticated delivery: acknowledge it
                logger.exception("failed processing delivery, %d record(s) queued before the error", ack.queued)
                self.counters.inc(metrics.DELIVERY_FAILED)
                return ack, 1
            return ack, failures
        finally:
            reset_delivery(token)

    def _decode_and_enqueue(self, text: str, ack: Ack) -> int:
        batch = decode_payload(text, counters=self.counters)
        for record in batch.records:
            try:
                self.queue.enqueue(record)
            except QueueClosedError as e:
                logger.error("failed to queue log message to be sent to outputs: %s", e)
                self.counters.inc(metrics.ENQUEUE_FAILED)
                continue
            ack.queued += 1
            self.counters.inc(metrics.RECORDS_ENQUEUED)

        if batch.failures:
            logger.info("queued %d record(s), %d failed to decode", ack.queued, batch.failures)
        else:
            logger.debug("queued %d record(s)", ack.queued)
        return batch.failures

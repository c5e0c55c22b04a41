from __future__ import annotations

import binascii
import hashlib
import hmac
import logging
from enum import Enum
from typing import Optional

from logdrain import metrics
from logdrain.metrics import COUNTERS, Counters

logger = logging.getLogger(__name__)

# The platform signs drain deliveries with HMAC-SHA1
DIGEST = hashlib.sha1
DIGEST_SIZE = DIGEST().digest_size


class Verdict(str, Enum):
    OK = "ok"
    MISSING = "missing"
    MALFORMED = "malformed"
    MISMATCH = "mismatch"


_REJECTION_COUNTERS = {
    Verdict.MISSING: metrics.SIGNATURE_MISSING,
    Verdict.MALFORMED: metrics.SIGNATURE_MALFORMED,
    Verdict.MISMATCH: metrics.SIGNATURE_MISMATCH,
}


class SignatureVerifier:
    def __init__(self, secret: str, counters: Counters = COUNTERS):
        self._key = secret.encode("utf-8")
        self.counters = counters

    def sign(self, body: bytes) -> str:
        return hmac.new(self._key, body, DIGEST).hexdigest()

    def verify(self, body: bytes, signature: Optional[str]) -> Verdict:
        verdict = self._check(body, signature)
        if verdict is not Verdict.OK:
            self.counters.inc(_REJECTION_COUNTERS[verdict])
        return verdict

    def _check(self, body: bytes, signature: Optional[str]) -> Verdict:
        if not signature:
            logger.warning("received payload without signature")
            return Verdict.MISSING

        signature = signature.strip()
        if len(signature) != DIGEST_SIZE * 2:
            logger.error("signature has wrong length: %d chars", len(signature))
            return Verdict.MALFORMED
        try:
            claimed = binascii.unhexlify(signature)
        except (binascii.Error, ValueError):
            logger.error("signature is not valid hex")
            return Verdict.MALFORMED

        expected = hmac.new(self._key, body, DIGEST).digest()
        if not hmac.compare_digest(expected, claimed):
            logger.error("failed verifying signature")
            return Verdict.MISMATCH
        return Verdict.OK

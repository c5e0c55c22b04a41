from __future__ import annotations

import json
import logging
from typing import Any, Union

from pydantic import ValidationError

from logdrain import metrics
from logdrain.metrics import COUNTERS, Counters
from logdrain.records import RECORD_ADAPTER, Batch, LogRecord

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 200


def _preview(raw: str) -> str:
    if len(raw) <= _PREVIEW_CHARS:
        return raw
    return raw[:_PREVIEW_CHARS] + "..."


def decode_record(element: Any) -> LogRecord:
    """Decode one array element; dispatches on its ``source`` field."""
    return RECORD_ADAPTER.validate_python(element)


def decode_payload(raw: Union[str, bytes], counters: Counters = COUNTERS) -> Batch:
    """
    Decode a drain delivery body (a JSON array of log events) into a Batch.

    A body that is not a JSON array fails as a whole: no records and one failure.
    Otherwise each element is decoded on its own and bad ones are skipped, so
    one malformed event never costs its siblings.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")

    try:
        doc = json.loads(raw)
    except (ValueError, RecursionError) as e:
        # RecursionError: nesting deeper than the parser can follow
        logger.error("failed parsing payload: %s; payload=%r", e, _preview(raw))
        counters.inc(metrics.PAYLOAD_DECODE_FAILED)
        return Batch(failures=1, payload_error=str(e))

    if not isinstance(doc, list):
        err = f"expected a JSON array, got {type(doc).__name__}"
        logger.error("failed parsing payload: %s", err)
        counters.inc(metrics.PAYLOAD_DECODE_FAILED)
        return Batch(failures=1, payload_error=err)

    batch = Batch()
    for idx, element in enumerate(doc):
        try:
            batch.records.append(decode_record(element))
        except RecursionError as e:
            batch.failures += 1
            counters.inc(metrics.ELEMENT_DECODE_FAILED)
            logger.warning("skipping element %d: nested too deeply: %s", idx, e)
        except ValidationError as e:
            batch.failures += 1
            counters.inc(metrics.ELEMENT_DECODE_FAILED)
            source = element.get("source") if isinstance(element, dict) else None
            logger.warning(
                "skipping element %d (source=%r): %d validation error(s): %s",
                idx, source, e.error_count(), e.errors(include_url=False)[:3],
            )

    logger.debug("decoded %d record(s), %d failure(s)", len(batch.records), batch.failures)
    return batch

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

import requests

from logdrain.records import LogRecord
from logdrain.sinks import BufferedSink

PUSH_PATH = "/loki/api/v1/push"


def to_nanos(ts: int) -> str:
    # platform timestamps are epoch ms
    return str(ts * 1_000_000)


def build_push_body(batch: List[LogRecord]) -> Dict[str, Any]:
    streams: Dict[Tuple[Tuple[str, str], ...], List[List[str]]] = {}
    for record in batch:
        key = tuple(sorted(record.labels().items()))
        streams.setdefault(key, []).append([to_nanos(record.timestamp), record.to_json()])
    return {
        "streams": [
            {"stream": dict(key), "values": values}
            for key, values in streams.items()
        ]
    }


class LokiSink(BufferedSink):
    name = "loki"

    def __init__(
        self,
        *,
        url: str,
        user: str = "",
        password: str = "",
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.url = url.rstrip("/") + PUSH_PATH
        self.auth = (user, password) if user else None
        self.timeout = timeout
        self.session = session

    def open(self) -> None:
        if self.session is None:
            self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if self.auth:
            self.session.auth = self.auth

    def ship(self, batch: List[LogRecord]) -> None:
        body = build_push_body(batch)
        resp = self.session.post(self.url, data=json.dumps(body), timeout=self.timeout)
        if resp.status_code // 100 != 2:
            raise requests.HTTPError(
                f"loki push failed: {resp.status_code} {resp.text[:200]}",
                response=resp,
            )

    async def close(self) -> None:
        await super().close()
        if self.session is not None:
            self.session.close()

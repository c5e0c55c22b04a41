from __future__ import annotations

import pytest

from logdrain.config import Settings
from logdrain.metrics import Counters

from helpers import SECRET, VERIFY


@pytest.fixture
def counters() -> Counters:
    return Counters()


@pytest.fixture
def settings() -> Settings:
    return Settings(vercel_verify=VERIFY, vercel_secret=SECRET, enable_metrics=True, sink_timeout=5.0)

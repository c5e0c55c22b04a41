import json

import pytest
from pydantic import ValidationError

from logdrain import metrics
from logdrain.decoder import decode_payload, decode_record
from logdrain.records import BuildRecord, EdgeRecord, ExternalRecord, LambdaRecord, StaticRecord

from helpers import lambda_event


def _dump(events) -> str:
    return json.dumps(events)


class TestElements:
    def test_each_source_gets_its_own_shape(self):
        raw = _dump([
            {"source": "build", "timestamp": 1, "message": "npm i", "buildId": "b1"},
            {"source": "static", "timestamp": 2, "path": "/x.png", "statusCode": 200},
            {"source": "lambda", "timestamp": 3, "message": "hi", "executionRegion": "iad1"},
            {"source": "edge", "timestamp": 4, "entrypoint": "middleware.ts"},
            {"source": "external", "timestamp": 5, "destination": "https://api.example.com"},
        ])
        batch = decode_payload(raw)
        assert [type(r) for r in batch.records] == [
            BuildRecord, StaticRecord, LambdaRecord, EdgeRecord, ExternalRecord,
        ]
        assert batch.failures == 0
        assert batch.records[0].build_id == "b1"
        assert batch.records[1].status_code == 200
        assert batch.records[2].execution_region == "iad1"

    def test_valid_and_malformed_mixed(self, counters):
        events = [
            lambda_event("a", 1),
            {"source": "unknown-kind", "x": 1},
            lambda_event("b", 2),
            {"message": "no source", "timestamp": 3},
            {"source": "lambda", "message": "no timestamp"},
            "not an object",
            lambda_event("c", 4),
            {"source": "edge", "timestamp": "yesterday"},
        ]
        batch = decode_payload(_dump(events), counters=counters)
        assert [r.message for r in batch.records] == ["a", "b", "c"]
        assert batch.failures == 5
        assert batch.payload_error is None
        assert counters.get(metrics.ELEMENT_DECODE_FAILED) == 5
        assert counters.get(metrics.PAYLOAD_DECODE_FAILED) == 0

    def test_order_preserved(self):
        events = [lambda_event(str(i), i) for i in range(50)]
        batch = decode_payload(_dump(events))
        assert [r.message for r in batch.records] == [str(i) for i in range(50)]

    def test_bytes_input(self):
        batch = decode_payload(_dump([lambda_event()]).encode("utf-8"))
        assert len(batch) == 1

    def test_empty_array(self, counters):
        batch = decode_payload("[]", counters=counters)
        assert batch.records == []
        assert batch.failures == 0
        assert counters.snapshot() == {}

    def test_decode_record_rejects_unknown_source(self):
        with pytest.raises(ValidationError):
            decode_record({"source": "firewall", "timestamp": 1})


class TestWholePayload:
    @pytest.mark.parametrize("raw", ["", "not json", "[{", '[{"source": "lambda"'])
    def test_invalid_json(self, counters, raw):
        batch = decode_payload(raw, counters=counters)
        assert batch.records == []
        assert batch.failures == 1
        assert batch.payload_error
        assert counters.get(metrics.PAYLOAD_DECODE_FAILED) == 1
        assert counters.get(metrics.ELEMENT_DECODE_FAILED) == 0

    @pytest.mark.parametrize("raw", ['{"source": "lambda", "timestamp": 1}', "42", '"str"', "null"])
    def test_not_an_array(self, counters, raw):
        batch = decode_payload(raw, counters=counters)
        assert batch.records == []
        assert batch.failures == 1
        assert "array" in batch.payload_error

    def test_nesting_too_deep_for_the_parser(self, counters):
        raw = "[" * 100000 + "]" * 100000
        batch = decode_payload(raw, counters=counters)
        assert batch.records == []
        assert batch.failures == 1
        assert batch.payload_error
        assert counters.get(metrics.PAYLOAD_DECODE_FAILED) == 1

    def test_deep_field_in_one_element(self, counters):
        deep = '{"a":' * 5000 + "1" + "}" * 5000
        raw = '[{"source": "lambda", "timestamp": 1, "nested": ' + deep + '}, {"source": "lambda", "timestamp": 2}]'
        batch = decode_payload(raw, counters=counters)
        assert batch.records == []
        assert batch.failures == 1

"""Tests for the Firehose log transformation Lambda."""
import base64
import gzip
import json

import pytest


@pytest.fixture
def transform(load_lambda):
    return load_lambda("logs_transform")


def firehose_record(record_id: str, payload: dict) -> dict:
    data = base64.b64encode(gzip.compress(json.dumps(payload).encode("utf-8"))).decode("ascii")
    return {"recordId": record_id, "data": data}


def decode_ndjson(data: str) -> list:
    text = base64.b64decode(data).decode("utf-8")
    assert text.endswith("\n")
    return [json.loads(line) for line in text.splitlines()]


CONTROL = {"messageType": "CONTROL_MESSAGE", "logEvents": [{"id": "1", "timestamp": 0, "message": "CWL CONTROL"}]}

DATA = {
    "messageType": "DATA_MESSAGE",
    "logGroup": "/ecs/sample-app-dev/backend",
    "logStream": "ecs/flask/abc123",
    "logEvents": [
        {"id": "1", "timestamp": 1759305600000,
         "message": '{"level": "ERROR", "http_status": 500, "url": "/api/items"}'},
        {"id": "2", "timestamp": 1759305600123, "message": "plain text traceback line"},
        {"id": "3", "timestamp": 1759305601000,
         "message": '  {"level": "ERROR", "http_status": 503, "url": "/api/health"}\n'},
    ],
}


def test_control_and_data_records(transform):
    event = {"records": [firehose_record("r-control", CONTROL), firehose_record("r-data", DATA)]}

    records = transform.lambda_handler(event, None)["records"]

    assert [(r["recordId"], r["result"]) for r in records] == [("r-control", "Dropped"), ("r-data", "Ok")]
    values = decode_ndjson(records[1]["data"])
    assert len(values) == 2


def test_enrichment_fields(transform):
    records = transform.lambda_handler({"records": [firehose_record("r1", DATA)]}, None)["records"]

    first, second = decode_ndjson(records[0]["data"])
    assert first == {
        "level": "ERROR",
        "http_status": 500,
        "url": "/api/items",
        "log_group": "/ecs/sample-app-dev/backend",
        "log_stream": "ecs/flask/abc123",
        "ingestion_time_iso": "2025-10-01T08:00:00.000Z",
    }
    assert second["http_status"] == 503
    assert second["ingestion_time_iso"] == "2025-10-01T08:00:01.000Z"


def test_no_json_lines_is_dropped(transform):
    payload = {**DATA, "logEvents": [{"id": "1", "timestamp": 0, "message": "not json"},
                                     {"id": "2", "timestamp": 0, "message": "[1, 2, 3]"}]}

    record = transform.process_record(firehose_record("r1", payload))

    assert record["result"] == "Dropped"


def test_undecodable_record_fails_alone(transform):
    broken = {"recordId": "r-broken", "data": base64.b64encode(b"not gzip").decode("ascii")}
    event = {"records": [broken, firehose_record("r-ok", DATA)]}

    records = transform.lambda_handler(event, None)["records"]

    assert records[0] == {"recordId": "r-broken", "result": "ProcessingFailed", "data": broken["data"]}
    assert records[1]["result"] == "Ok"


def test_dropped_record_passes_data_through(transform):
    record = firehose_record("r-control", CONTROL)

    assert transform.process_record(record)["data"] == record["data"]


def test_nan_and_infinity_lines_are_skipped(transform):
    payload = {**DATA, "logEvents": [
        {"id": "1", "timestamp": 0, "message": '{"url": "/api/a", "response_time": NaN}'},
        {"id": "2", "timestamp": 0, "message": '{"url": "/api/b", "response_time": -Infinity}'},
        {"id": "3", "timestamp": 0, "message": '{"url": "/api/c", "response_time": 0.25}'},
    ]}

    record = transform.process_record(firehose_record("r1", payload))

    assert record["result"] == "Ok"
    text = base64.b64decode(record["data"]).decode("utf-8")
    assert "NaN" not in text and "Infinity" not in text
    assert [value["url"] for value in decode_ndjson(record["data"])] == ["/api/c"]

"""Firehose transformation Lambda for CloudWatch Logs subscriptions.

Each Firehose record carries a gzip-compressed CloudWatch Logs payload. The
structured (JSON) log lines are unwrapped, tagged with their origin and
re-emitted as newline-delimited JSON so Athena can query them directly.

Per-record results:
  Ok               - at least one JSON log line survived
  Dropped          - control/test message, or no JSON lines at all
  ProcessingFailed - anything unexpected; Firehose retries / error-prefixes it
"""
import base64
import gzip
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

logger = logging.getLogger()
logger.setLevel(logging.INFO)

DATA_MESSAGE = "DATA_MESSAGE"


def _reject_constant(name: str):
    # NaN/Infinity are not JSON; JsonSerDe would reject the re-encoded line
    raise ValueError(f"non-standard JSON constant {name}")


def _iso_from_millis(millis: int) -> str:
    moment = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def encode_records(values: List[Dict[str, Any]]) -> str:
    text = "".join(json.dumps(value, ensure_ascii=False) + "\n" for value in values)
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def enrich_events(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Parse each log event as JSON and merge in the origin fields."""
    enriched = []
    for log_event in payload.get("logEvents") or []:
        message = (log_event.get("message") or "").strip()
        if not message:
            continue
        try:
            structured = json.loads(message, parse_constant=_reject_constant)
        except ValueError:
            continue
        if not isinstance(structured, dict):
            continue
        enriched.append({
            **structured,
            "log_group": payload.get("logGroup"),
            "log_stream": payload.get("logStream"),
            "ingestion_time_iso": _iso_from_millis(log_event["timestamp"]),
        })
    return enriched


def _passthrough(record: Dict[str, Any], result: str) -> Dict[str, Any]:
    return {"recordId": record["recordId"], "result": result, "data": record["data"]}


def process_record(record: Dict[str, Any]) -> Dict[str, Any]:
    try:
        raw = gzip.decompress(base64.b64decode(record["data"]))
        payload = json.loads(raw.decode("utf-8"))

        if payload.get("messageType") != DATA_MESSAGE:
            return _passthrough(record, "Dropped")

        enriched = enrich_events(payload)
        if not enriched:
            return _passthrough(record, "Dropped")

        return {"recordId": record["recordId"], "result": "Ok", "data": encode_records(enriched)}
    except Exception:
        logger.exception("Firehose transform failed for record %s", record.get("recordId"))
        return _passthrough(record, "ProcessingFailed")


def lambda_handler(event, _context):
    records = [process_record(record) for record in event.get("records", [])]
    summary: Dict[str, int] = {}
    for record in records:
        summary[record["result"]] = summary.get(record["result"], 0) + 1
    logger.info("Transformed %d record(s): %s", len(records), summary)
    return {"records": records}

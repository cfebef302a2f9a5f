"""Loki range-query wire format: URL building, one HTTP attempt, envelope parsing."""

import datetime
import json
import logging
import urllib.parse
from typing import Any, Optional

import httpx

from loki_check.errors import MalformedResponse
from loki_check.schemas.logs import LogEntry, LogStream, LokiQuery, RangeQueryResult

logger = logging.getLogger(__name__)

QUERY_RANGE_PATH = "/loki/api/v1/query_range"

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


def format_timestamp(value: datetime.datetime) -> str:
    """Render a datetime the way the range query expects it: UTC, whole seconds, literal Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(raw: Any) -> datetime.datetime:
    """Parse an entry timestamp: nanosecond epoch string (Loki's default) or RFC3339."""
    if not isinstance(raw, str) or not raw:
        raise MalformedResponse(f"entry timestamp must be a non-empty string, got {raw!r}")
    if raw.isascii() and raw.isdigit():
        seconds, nanos = divmod(int(raw), 1_000_000_000)
        try:
            return _EPOCH + datetime.timedelta(seconds=seconds, microseconds=nanos // 1000)
        except OverflowError:
            raise MalformedResponse(f"entry timestamp {raw!r} is out of range") from None
    try:
        parsed = datetime.datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except (ValueError, OverflowError):
        raise MalformedResponse(f"unrecognised entry timestamp {raw!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def build_query_url(base_url: str, query: LokiQuery) -> str:
    """Full query_range URL with selector, start and end percent-encoded."""
    params = {
        "query": query.selector,
        "start": format_timestamp(query.start),
        "end": format_timestamp(query.end),
    }
    encoded = urllib.parse.urlencode(params, quote_via=urllib.parse.quote, safe="")
    return f"{base_url.rstrip('/')}{QUERY_RANGE_PATH}?{encoded}"


def fetch_range(client: httpx.Client, url: str, timeout: Optional[float] = None) -> httpx.Response:
    """Issue one GET against query_range. Transport errors propagate as httpx exceptions."""
    logger.debug("[loki] GET %s (timeout=%s)", url, timeout)
    kwargs: dict[str, Any] = {"headers": {"Accept": "application/json"}}
    if timeout is not None:
        kwargs["timeout"] = timeout
    return client.get(url, **kwargs)


def _parse_stream(index: int, stream: Any) -> LogStream:
    if not isinstance(stream, dict):
        raise MalformedResponse(f"result[{index}] is not an object")

    labels = stream.get("stream")
    if labels is None:
        labels = {}
    if not isinstance(labels, dict):
        raise MalformedResponse(f"result[{index}].stream is not an object")

    values = stream.get("values")
    if values is None:
        values = []
    if not isinstance(values, list):
        raise MalformedResponse(f"result[{index}].values is not a list")

    entries: list[LogEntry] = []
    for pos, pair in enumerate(values):
        if not isinstance(pair, list) or len(pair) != 2:
            raise MalformedResponse(
                f"result[{index}].values[{pos}] is not a [timestamp, line] pair"
            )
        ts_raw, line = pair
        if not isinstance(line, str):
            raise MalformedResponse(f"result[{index}].values[{pos}] line is not a string")
        entries.append(LogEntry(timestamp=parse_timestamp(ts_raw), line=line))

    return LogStream(labels={str(k): str(v) for k, v in labels.items()}, entries=entries)


def parse_range_response(body: str) -> RangeQueryResult:
    """
    Parse a query_range body into streams.

    Missing/null ``data`` or ``result`` and an empty result all mean "no lines yet",
    which is a normal state while ingestion catches up. Anything that is present but
    shaped wrong raises MalformedResponse.
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        raise MalformedResponse("body is not valid JSON", body) from None

    if not isinstance(payload, dict):
        raise MalformedResponse("top-level JSON value is not an object", body)

    data = payload.get("data")
    if data is None:
        return RangeQueryResult()
    if not isinstance(data, dict):
        raise MalformedResponse("data is not an object", body)

    results = data.get("result")
    if results is None:
        return RangeQueryResult()
    if not isinstance(results, list):
        raise MalformedResponse("data.result is not a list", body)

    return RangeQueryResult(streams=[_parse_stream(i, s) for i, s in enumerate(results)])

from __future__ import annotations

import json
from typing import Any, cast
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

USER_AGENT = "podcast-digest/1.0"


class HttpRequestError(Exception):
    """The request never produced an HTTP response (DNS, connect, timeout)."""


def fetch_json(
    *,
    url: str,
    timeout_seconds: float,
    headers: dict[str, str] | None = None,
    params: dict[str, str] | None = None,
    method: str = "GET",
    form: dict[str, str] | None = None,
) -> tuple[int, dict[str, Any]]:
    """
    Perform one HTTP request and decode a JSON object body.

    HTTP error statuses are returned rather than raised so callers can map
    provider-specific error payloads; only transport failures raise.
    """
    query = urlencode(params or {})
    request_url = f"{url}?{query}" if query else url
    request_headers = {
        "accept": "application/json",
        "user-agent": USER_AGENT,
        **(headers or {}),
    }
    data: bytes | None = None
    if form is not None:
        data = urlencode(form).encode("utf-8")
        request_headers["content-type"] = "application/x-www-form-urlencoded"

    request = Request(request_url, headers=request_headers, data=data, method=method)

    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            status_code, body, response_headers = response.status, response.read(), response.headers
    except HTTPError as exc:
        # Error statuses still carry a JSON body.
        status_code, body, response_headers = exc.code, exc.read(), exc.headers
    except (URLError, TimeoutError, OSError) as exc:
        raise HttpRequestError(f"{method} {url} failed: {exc}") from exc

    payload = parse_json_dict(body.decode("utf-8", errors="replace"))
    request_id = _extract_request_id_from_headers(response_headers)
    if request_id is not None:
        payload.setdefault("_request_id", request_id)
    return status_code, payload


def parse_json_dict(raw_body: str) -> dict[str, Any]:
    """Decode a JSON object body; anything else (blank, invalid, a list) becomes `{}`."""
    try:
        return as_dict(json.loads(raw_body)) if raw_body.strip() else {}
    except json.JSONDecodeError:
        return {}


_REQUEST_ID_HEADERS: tuple[str, ...] = ("x-request-id", "request-id")


def _extract_request_id_from_headers(headers: Any) -> str | None:
    getter = getattr(headers, "get", None)
    if getter is None:
        return None
    # `email.message.Message` headers are case-insensitive; plain dicts are not.
    candidates = (getter(name) or getter(name.title()) for name in _REQUEST_ID_HEADERS)
    return next((value for value in map(coerce_nonempty_string, candidates) if value), None)


def as_dict(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    items = cast(dict[object, Any], value).items()
    return {key: item for key, item in items if isinstance(key, str)}


def as_list(value: Any) -> list[Any]:
    return list(cast(list[Any], value)) if isinstance(value, list) else []


def coerce_nonempty_string(raw_value: object) -> str | None:
    if not isinstance(raw_value, str):
        return None
    return raw_value.strip() or None


def coerce_int(raw_value: object) -> int | None:
    """Accept ints, floats and numeric strings (the YouTube API sends counts as strings)."""
    if isinstance(raw_value, int | float):
        return int(raw_value)
    if isinstance(raw_value, str):
        try:
            return int(raw_value.strip())
        except ValueError:
            return None
    return None

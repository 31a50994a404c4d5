from __future__ import annotations

import base64
import json
from http.client import HTTPConnection, HTTPSConnection
from typing import Any
from urllib.parse import quote, urlparse


def build_base_url(host: str, port: int | None = None) -> str:
    trimmed = host.strip().rstrip("/")
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    if port:
        return f"http://{trimmed}:{port}"
    return f"http://{trimmed}"


def basic_auth_header(username: str, password: str) -> dict[str, str]:
    raw = f"{username}:{password}".encode()
    return {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}


def path_segment(value: str) -> str:
    return quote(value, safe="")


def request_json(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    timeout_s: float = 10.0,
) -> tuple[int, Any]:
    """Issue one request and decode the json body.

    Returns the status and the decoded payload (None for an empty body). A
    body that is not json comes back as {"error": "non_json_response: ..."}.
    Connection errors propagate to the caller.
    """
    parsed = urlparse(url)
    if not parsed.hostname:
        raise ValueError("missing hostname")
    if parsed.scheme == "https":
        conn = HTTPSConnection(parsed.hostname, parsed.port or 443, timeout=timeout_s)
    else:
        conn = HTTPConnection(parsed.hostname, parsed.port or 80, timeout=timeout_s)
    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"
    request_headers = {"Accept": "application/json"}
    if headers:
        request_headers.update(headers)
    payload: Any = None
    status: int | None = None
    try:
        conn.request(method, path, headers=request_headers)
        resp = conn.getresponse()
        status = int(resp.status)
        raw = resp.read()
        if raw:
            try:
                payload = json.loads(raw.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError):
                snippet = raw[:240].decode("utf-8", errors="replace").strip()
                payload = {
                    "error": f"non_json_response: {snippet}" if snippet else "non_json_response"
                }
    finally:
        conn.close()
    assert status is not None
    return status, payload

from __future__ import annotations

import logging
from http.client import HTTPException
from typing import Any

from ..errors import ProtocolError, StaleTokenError, TransportError
from . import http_client
from .types import MessagePlyList, PlyMessage, RhizomeBundle, RhizomeBundleList

logger = logging.getLogger(__name__)


def _error_detail(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    for key in ("error", "http_status_message", "message"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def parse_table(payload: Any) -> list[dict[str, Any]]:
    """Turn a {"header": [...], "rows": [[...]]} payload into row dicts."""
    if not isinstance(payload, dict):
        raise ProtocolError(f"expected a json object, got {type(payload).__name__}")
    header = payload.get("header")
    rows = payload.get("rows")
    if not isinstance(header, list) or not all(isinstance(col, str) for col in header):
        raise ProtocolError("missing or invalid table header")
    if not isinstance(rows, list):
        raise ProtocolError("missing or invalid table rows")
    parsed: list[dict[str, Any]] = []
    for row in rows:
        if not isinstance(row, list) or len(row) != len(header):
            raise ProtocolError("table row does not match header")
        parsed.append(dict(zip(header, row, strict=True)))
    return parsed


def _opt_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _opt_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"expected an integer, got {value!r}") from exc


def _last_token(tokens: list[str | None]) -> str | None:
    for token in reversed(tokens):
        if token:
            return token
    return None


def parse_message_ply(payload: Any) -> MessagePlyList:
    messages: list[PlyMessage] = []
    for row in parse_table(payload):
        offset = _opt_int(row.get("offset"))
        if offset is None:
            raise ProtocolError("message row without offset")
        messages.append(
            PlyMessage(
                offset=offset,
                token=_opt_str(row.get("token")),
                text=str(row.get("text") or ""),
                timestamp=_opt_int(row.get("timestamp")),
            )
        )
    return MessagePlyList(
        name=_opt_str(payload.get("name")),
        messages=messages,
        token=_last_token([message.token for message in messages]),
    )


def parse_bundle_list(payload: Any) -> RhizomeBundleList:
    bundles: list[RhizomeBundle] = []
    for row in parse_table(payload):
        manifest_id = _opt_str(row.get("id"))
        version = _opt_int(row.get("version"))
        if manifest_id is None or version is None:
            raise ProtocolError("bundle row without id/version")
        bundles.append(
            RhizomeBundle(
                manifest_id=manifest_id,
                version=version,
                token=_opt_str(row.get(".token")),
                service=_opt_str(row.get("service")),
                name=_opt_str(row.get("name")),
                sender=_opt_str(row.get("sender")),
                recipient=_opt_str(row.get("recipient")),
                author=_opt_str(row.get(".author")),
                date=_opt_int(row.get("date")),
                filesize=_opt_int(row.get("filesize")),
            )
        )
    return RhizomeBundleList(
        bundles=bundles,
        token=_last_token([bundle.token for bundle in bundles]),
    )


class ServaldClient:
    """Blocking client for the daemon's restful list endpoints.

    Every call is bounded by `timeout_s`. Unreachable daemons and timeouts
    raise TransportError; anything the daemon rejects or answers with an
    unexpected shape raises ProtocolError.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        username: str,
        password: str,
        timeout_s: float = 10.0,
    ) -> None:
        self.base_url = http_client.build_base_url(host, port)
        self.timeout_s = timeout_s
        self._headers = http_client.basic_auth_header(username, password)

    def _get(self, path: str, *, since_token: str | None = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            status, payload = http_client.request_json(
                "GET", url, headers=self._headers, timeout_s=self.timeout_s
            )
        except ValueError as exc:
            raise ProtocolError(f"invalid daemon url {url!r}: {exc}") from exc
        except (OSError, HTTPException) as exc:
            raise TransportError(f"GET {path} failed: {exc}") from exc
        logger.debug("GET %s -> %s", path, status)
        detail = _error_detail(payload)
        suffix = f" ({status}: {detail})" if detail else f" ({status})"
        if status == 200:
            if payload is None:
                raise ProtocolError(f"GET {path}: empty response", status=status)
            if isinstance(payload, dict) and "rows" not in payload and "error" in payload:
                raise ProtocolError(f"GET {path}: {payload['error']}", status=status)
            return payload
        if status in (401, 403):
            raise ProtocolError(f"GET {path}: authentication failed{suffix}", status=status)
        if status == 404 and since_token is not None:
            raise StaleTokenError(f"GET {path}: unknown token {since_token!r}", status=status)
        if status >= 500:
            raise TransportError(f"GET {path}: daemon error{suffix}")
        raise ProtocolError(f"GET {path}: request rejected{suffix}", status=status)

    def meshmb_list_messages(self, signing_key: str) -> MessagePlyList:
        key = http_client.path_segment(signing_key)
        return parse_message_ply(self._get(f"/restful/meshmb/{key}/messagelist.json"))

    def meshmb_list_messages_since(self, signing_key: str, token: str) -> MessagePlyList:
        if not token:
            return self.meshmb_list_messages(signing_key)
        key = http_client.path_segment(signing_key)
        since = http_client.path_segment(token)
        path = f"/restful/meshmb/{key}/newsince/{since}/messagelist.json"
        return parse_message_ply(self._get(path, since_token=token))

    def rhizome_list_bundles(self) -> RhizomeBundleList:
        return parse_bundle_list(self._get("/restful/rhizome/bundlelist.json"))

    def rhizome_list_bundles_since(self, token: str) -> RhizomeBundleList:
        if not token:
            return self.rhizome_list_bundles()
        path = f"/restful/rhizome/newsince/{http_client.path_segment(token)}/bundlelist.json"
        return parse_bundle_list(self._get(path, since_token=token))

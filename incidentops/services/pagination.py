from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, Sequence, TypeVar

from incidentops.core.errors import PaginationError
from incidentops.persistence.repos.base import PagePosition


T = TypeVar("T")


class CursorError(ValueError):
    """Raised when a cursor cannot be decoded or verified."""


def encode_cursor(payload: dict[str, Any], secret: str) -> str:
    # Sign cursor payloads to prevent client-side tampering.
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    encoded = base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")
    return f"{encoded}.{signature}"


def decode_cursor(token: str, secret: str) -> dict[str, Any]:
    # Verify cursor signatures and return the decoded payload.
    try:
        encoded, signature = token.split(".", 1)
    except ValueError as exc:
        raise CursorError("Invalid cursor format") from exc
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("utf-8"))
    except (ValueError, binascii.Error) as exc:
        raise CursorError("Invalid cursor encoding") from exc
    expected = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    # Client-supplied signatures may hold any character; compare as bytes.
    if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8", "replace")):
        raise CursorError("Invalid cursor signature")
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CursorError("Invalid cursor payload") from exc
    if not isinstance(payload, dict):
        raise CursorError("Invalid cursor payload")
    return payload


def normalize_limit(limit: int | None, *, default: int, maximum: int) -> int:
    if limit is None:
        return default
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise PaginationError("Limit must be a positive integer.", code="PAGINATION_LIMIT_INVALID")
    return min(limit, maximum)


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    next_cursor: str | None


class CursorCodec:
    """Opaque keyset cursors over (created_at DESC, id DESC) listings."""

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def encode(self, position: PagePosition) -> str:
        created_at = position.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        payload = {
            "createdAt": created_at.astimezone(timezone.utc).isoformat(),
            "id": position.id,
        }
        return encode_cursor(payload, self._secret)

    def decode(self, cursor: str | None) -> PagePosition | None:
        # An absent cursor means "first page"; a present but broken one is a client error.
        if cursor is None:
            return None
        try:
            payload = decode_cursor(cursor, self._secret)
            created_at_raw = payload.get("createdAt")
            row_id = payload.get("id")
            if not isinstance(created_at_raw, str) or not isinstance(row_id, str) or not row_id:
                raise CursorError("Invalid cursor payload")
            created_at = datetime.fromisoformat(created_at_raw)
        except (CursorError, ValueError) as exc:
            raise PaginationError("Cursor is invalid.", code="PAGINATION_CURSOR_INVALID") from exc
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return PagePosition(created_at=created_at, id=row_id)

    def page(self, items: Sequence[T], limit: int) -> Page[T]:
        # Only a full page can have a successor.
        rows = list(items)
        if len(rows) < limit or not rows:
            return Page(items=rows, next_cursor=None)
        last = rows[-1]
        next_cursor = self.encode(PagePosition(created_at=last.created_at, id=last.id))
        return Page(items=rows, next_cursor=next_cursor)

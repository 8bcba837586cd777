"""Signature header grammar.

Two wire shapes exist and they are not interchangeable:

* **split** (canonical) — the timestamp travels in its own header and the
  signature header only carries candidates, e.g. ``v1=<tag>``.
* **combined** — the timestamp is embedded next to the candidates, e.g.
  ``t=1700000000,v1=<tag>``.

Tokens are ``key=value`` pairs separated by commas and/or whitespace.
Recognised keys are ``v1`` (repeatable), ``t`` and ``k`` / ``kid``;
anything else is ignored so new fields can be introduced later.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal, Union

HeaderVariant = Literal["split", "combined"]

_SEPARATORS = re.compile(r"[,\s]+")
_INTEGER = re.compile(r"[+-]?[0-9]{1,19}")


class MalformedHeaderError(ValueError):
    """Raised when a signature header cannot be used at all."""


@dataclass(frozen=True)
class HeaderNames:
    """HTTP header names carrying the id, signature and timestamp."""

    id: str = "webhook-id"
    signature: str = "webhook-signature"
    timestamp: str = "webhook-timestamp"


@dataclass(frozen=True)
class SplitSignatureHeader:
    """Signature header whose timestamp lives in a separate header."""

    candidates: tuple[str, ...]
    key_id: str | None = None
    candidate_count: int = field(default=0, compare=False)

    variant: HeaderVariant = field(default="split", init=False)


@dataclass(frozen=True)
class CombinedSignatureHeader:
    """Signature header that embeds the timestamp as ``t=...``."""

    timestamp: int
    candidates: tuple[str, ...]
    key_id: str | None = None
    candidate_count: int = field(default=0, compare=False)

    variant: HeaderVariant = field(default="combined", init=False)


SignatureHeader = Union[SplitSignatureHeader, CombinedSignatureHeader]


def parse_timestamp(value: str | None) -> int | None:
    """Parse a decimal unix timestamp, or return ``None``."""
    if value is None:
        return None
    value = value.strip()
    if not _INTEGER.fullmatch(value):
        return None
    return int(value)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return value[1:-1]
    return value


def parse_signature_header(
    value: str,
    *,
    max_parts: int = 10,
    max_candidates: int = 5,
) -> SignatureHeader:
    """Parse a signature header into its tagged variant.

    Parameters
    ----------
    value:
        Raw header value.
    max_parts:
        Headers split into more tokens than this are refused outright.
    max_candidates:
        Headers carrying more ``v1`` entries than this are refused outright,
        before any of them is looked at.

    Returns
    -------
    SplitSignatureHeader | CombinedSignatureHeader
        :class:`CombinedSignatureHeader` when a valid ``t`` field is present.
        Duplicate candidates are collapsed, first occurrence wins.

    Raises
    ------
    MalformedHeaderError
        Empty header, too many tokens or candidates, or no recognised field.
    """
    if not value or not value.strip():
        raise MalformedHeaderError("empty signature header")

    parts = [p for p in _SEPARATORS.split(value.strip()) if p]
    if len(parts) > max_parts:
        raise MalformedHeaderError(f"too many header parts ({len(parts)} > {max_parts})")

    candidates: list[str] = []
    seen: set[str] = set()
    count = 0
    timestamp: int | None = None
    key_id: str | None = None
    recognised = False

    for part in parts:
        name, sep, raw = part.partition("=")
        name = name.strip().lower()
        raw = _unquote(raw.strip())
        if not sep or not name or not raw:
            continue

        if name == "v1":
            recognised = True
            count += 1
            if raw not in seen:
                seen.add(raw)
                candidates.append(raw)
        elif name == "t":
            parsed = parse_timestamp(raw)
            if parsed is not None:
                recognised = True
                timestamp = parsed
        elif name in ("k", "kid"):
            recognised = True
            key_id = raw

    if not recognised:
        raise MalformedHeaderError("no recognised field in signature header")
    if count > max_candidates:
        raise MalformedHeaderError(f"too many signatures ({count} > {max_candidates})")

    if timestamp is not None:
        return CombinedSignatureHeader(
            timestamp=timestamp,
            candidates=tuple(candidates),
            key_id=key_id,
            candidate_count=count,
        )
    return SplitSignatureHeader(
        candidates=tuple(candidates),
        key_id=key_id,
        candidate_count=count,
    )


def format_signature_header(
    signatures: list[str] | tuple[str, ...],
    *,
    timestamp: int | None = None,
    variant: HeaderVariant = "split",
) -> str:
    """Render encoded tags as a signature header value.

    The combined variant prefixes ``t=<timestamp>`` and requires it.
    """
    tokens = [f"v1={sig}" for sig in signatures]
    if variant == "combined":
        if timestamp is None:
            raise ValueError("combined signature header needs a timestamp")
        tokens.insert(0, f"t={int(timestamp)}")
    return ",".join(tokens)

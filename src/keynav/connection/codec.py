"""Transforms between display addresses and credential-bearing addresses.

Addresses are authority-form URLs such as ``redis://127.0.0.1:6379/0``. A bare
``host:port`` is accepted everywhere and normalized to the ``redis://`` scheme,
so ``parse(inject(address, password))`` returns the schemed form of the input.
Parsing problems raise :class:`~keynav.errors.ParseError` internally and are
always recovered through literal pattern fallbacks.
"""

from __future__ import annotations

import logging
import re
from typing import NamedTuple, Optional
from urllib.parse import SplitResult, quote, unquote, urlsplit, urlunsplit

from keynav.errors import ParseError

LOGGER = logging.getLogger(__name__)

DEFAULT_SCHEME = "redis"

_SCHEME_PREFIX = re.compile(r"^([A-Za-z][A-Za-z0-9+.\-]*)://")
_CREDENTIAL_FALLBACK = re.compile(r"^([A-Za-z][A-Za-z0-9+.\-]*)://:(.*?)@(.*)$")
_MASK = "***"


class ParsedAddress(NamedTuple):
    """Result of splitting a credential out of an address."""

    address: str
    password: Optional[str]


def inject(address: str, password: str) -> str:
    """Embed ``password`` into the authority of ``address``.

    Args:
        address: Display address, with or without a scheme.
        password: Shared secret to embed; an empty value leaves the address as-is.

    Returns:
        str: The credential-bearing address. An address that already carries a
        password keeps it; unparseable addresses fall back to literal insertion.
    """
    if not password:
        return address

    try:
        parts = _split(address)
    except ParseError as exc:
        LOGGER.debug("Falling back to literal credential insertion: %s", exc)
        return _insert_literal(address, password)

    if parts.password:
        return urlunsplit(parts)

    userinfo = f"{parts.username or ''}:{quote(password, safe='')}"
    netloc = f"{userinfo}@{_host_port(parts)}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def parse(address: str) -> ParsedAddress:
    """Strip any embedded credential from ``address``.

    Args:
        address: Address that may carry ``user:password@`` in its authority.

    Returns:
        ParsedAddress: The credential-free address and the decoded password, or
        ``None`` when no password was embedded.
    """
    try:
        parts = _split(address)
    except ParseError as exc:
        LOGGER.debug("Falling back to literal credential extraction: %s", exc)
        match = _CREDENTIAL_FALLBACK.match(address)
        if match:
            scheme, password, rest = match.groups()
            return ParsedAddress(f"{scheme}://{rest}", password)
        return ParsedAddress(address, None)

    password = unquote(parts.password) if parts.password else None
    path = parts.path
    if path == "/" and not parts.query and not parts.fragment:
        path = ""
    clean = urlunsplit((parts.scheme, _host_port(parts), path, parts.query, parts.fragment))
    return ParsedAddress(clean, password)


def mask(address: str) -> str:
    """Return ``address`` with any embedded password replaced by ``***``."""
    try:
        parts = _split(address)
    except ParseError:
        match = _CREDENTIAL_FALLBACK.match(address)
        if match:
            scheme, _, rest = match.groups()
            return f"{scheme}://:{_MASK}@{rest}"
        return address

    if not parts.password:
        return address
    netloc = f"{parts.username or ''}:{_MASK}@{_host_port(parts)}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def with_scheme(address: str) -> str:
    """Prefix ``address`` with the default scheme when it has none."""
    if "://" in address:
        return address
    return f"{DEFAULT_SCHEME}://{address}"


def _split(address: str) -> SplitResult:
    candidate = with_scheme(address)
    try:
        parts = urlsplit(candidate)
        parts.port  # noqa: B018 - raises ValueError for malformed ports
    except ValueError as exc:
        raise ParseError(f"address is not authority-form: {exc}") from exc
    if not parts.scheme or not parts.hostname:
        raise ParseError("address has no host component")
    return parts


def _host_port(parts: SplitResult) -> str:
    return parts.netloc.rpartition("@")[2]


def _insert_literal(address: str, password: str) -> str:
    match = _SCHEME_PREFIX.match(address)
    if match is None or "@" in address:
        return address
    prefix = match.group(0)
    return f"{prefix}:{password}@{address[len(prefix):]}"


__all__ = ["DEFAULT_SCHEME", "ParsedAddress", "inject", "parse", "mask", "with_scheme"]

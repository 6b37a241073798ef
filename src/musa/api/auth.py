"""Credential verification for write operations."""
from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, runtime_checkable

from musa.domain.errors import Unauthorized


@dataclass(frozen=True)
class Principal:
    subject: str


@runtime_checkable
class TokenVerifier(Protocol):
    """Anything able to turn a token into a principal."""

    def verify(self, token: Optional[str]) -> Principal:
        """Return the caller's principal or raise :class:`Unauthorized`."""


class StaticTokenVerifier:
    """Shared-secret tokens compared against a fixed allow-list."""

    def __init__(self, tokens: Iterable[str]) -> None:
        self._tokens = tuple(token for token in tokens if token)

    def verify(self, token: Optional[str]) -> Principal:
        if not token or not isinstance(token, str):
            raise Unauthorized("Unauthorized")
        for allowed in self._tokens:
            if hmac.compare_digest(token.encode(), allowed.encode()):
                return Principal(subject="static-token")
        raise Unauthorized("Unauthorized")

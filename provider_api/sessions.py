"""Credential pool passed explicitly through the generation call chain."""
import random
from dataclasses import dataclass
from typing import Optional

from asset_store.settings import parse_session_ids


class NoSessionConfiguredError(Exception):
    code = "NO_SESSION"


@dataclass(frozen=True)
class SessionPool:
    session_ids: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.session_ids)

    def pick(self) -> str:
        """Return one configured session id at random."""
        if not self.session_ids:
            raise NoSessionConfiguredError(
                "No session ID configured. Set JIMENG_SESSION_ID environment variable."
            )
        return random.choice(self.session_ids)

    @classmethod
    def from_authorization(cls, header: Optional[str]) -> "SessionPool":
        """Parse ``Bearer id1,id2`` into a pool; empty when absent."""
        if not header:
            return cls()
        value = header.strip()
        if value.lower().startswith("bearer "):
            value = value[len("bearer "):]
        return cls(parse_session_ids(value))

    def or_fallback(self, fallback: "SessionPool") -> "SessionPool":
        return self if self.session_ids else fallback

"""Commit-reveal randomness for contest draws.

The operator publishes ``commit_hash = H(secret_seed)`` when the contest
closes and discloses ``secret_seed`` once the roster is frozen. Anyone can
then recompute the hash and re-derive every random index used by the draw.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ..errors import CommitVerificationError, ValidationError

logger = logging.getLogger(__name__)

SEED_BYTES = 32
_HEX_DIGITS = frozenset("0123456789abcdef")

Digest = Callable[[bytes], str]


@dataclass(frozen=True)
class CommitRecord:
    """Published commitment. Immutable once created."""

    commit_hash: str
    created_at: datetime


@dataclass(frozen=True)
class RevealRecord:
    """Published reveal. Only valid if it hashes to the commit."""

    reveal_value: str
    revealed_at: datetime


def sha256_hex(payload: bytes) -> str:
    """Return the lower-case SHA-256 hex digest of ``payload``."""
    return hashlib.sha256(payload).hexdigest()


def _validate_seed(secret_seed: str) -> str:
    """Return ``secret_seed`` unchanged, rejecting blank or non-ASCII input.

    Seeds are hashed byte for byte; no normalization is applied, so two
    different strings never verify against the same commit.
    """

    if secret_seed is None:
        raise ValidationError("secret_seed must not be None")
    if not isinstance(secret_seed, str):
        raise TypeError("secret_seed must be a string")
    if not secret_seed.strip():
        raise ValidationError("secret_seed must not be empty")
    try:
        secret_seed.encode("ascii")
    except UnicodeEncodeError as exc:
        raise ValidationError("secret_seed must contain only ASCII characters") from exc
    return secret_seed


def _normalize_hash(commit_hash: str) -> str:
    if not isinstance(commit_hash, str):
        raise TypeError("commit_hash must be a string")
    normalized = commit_hash.strip().lower()
    if not normalized or not set(normalized) <= _HEX_DIGITS:
        raise ValidationError("commit_hash must be a non-empty hex string")
    return normalized


def generate_secret_seed() -> str:
    """Return a fresh 256-bit secret seed as hex."""
    return secrets.token_hex(SEED_BYTES)


class CommitRevealProtocol:
    """Two-phase randomness handshake over a pluggable digest.

    Parameters
    ----------
    digest : Callable[[bytes], str], default: :func:`sha256_hex`
        One-way hash returning a hex string. Swapping it changes every commit
        and every derived index, so it must be fixed for a contest's lifetime.
    """

    def __init__(self, digest: Optional[Digest] = None) -> None:
        self._digest = digest or sha256_hex

    @property
    def digest(self) -> Digest:
        return self._digest

    def hash_seed(self, secret_seed: str) -> str:
        return self._digest(_validate_seed(secret_seed).encode("ascii"))

    def begin_commit(self, secret_seed: str) -> str:
        """Return the commit hash for ``secret_seed``.

        Only the returned hash may be published; the seed itself stays with
        the operator until :meth:`reveal`.
        """
        commit_hash = self.hash_seed(secret_seed)
        logger.info("Commit hash generated: %s", commit_hash)
        return commit_hash

    def reveal(self, secret_seed: str) -> str:
        """Return the public reveal value for ``secret_seed``."""
        return _validate_seed(secret_seed)

    def verify(self, commit_hash: str, reveal_value: str) -> bool:
        """Return ``True`` when ``reveal_value`` hashes to ``commit_hash``.

        The comparison is constant-time. Malformed input never verifies.
        """
        try:
            expected = _normalize_hash(commit_hash)
            actual = self.hash_seed(reveal_value)
        except (ValidationError, TypeError):
            return False
        return hmac.compare_digest(expected, actual)

    def require_valid(self, commit_hash: str, reveal_value: str) -> None:
        """Raise :class:`CommitVerificationError` unless the reveal matches."""
        if not self.verify(commit_hash, reveal_value):
            logger.critical(
                "Commit verification failed for commit %s; draw aborted", commit_hash
            )
            raise CommitVerificationError(
                "Reveal value does not match the published commit hash"
            )

    def derive_random(
        self,
        commit_hash: str,
        reveal_value: str,
        salt: object,
        max_value: int,
    ) -> int:
        """Map ``(commit_hash, reveal_value, salt)`` to an integer in ``[0, max_value)``.

        Parameters
        ----------
        commit_hash : str
            Published commit hash.
        reveal_value : str
            Published reveal value.
        salt : object
            Per-use discriminator (e.g. the prize position). Its ``str()`` form
            is hashed, so different salts yield independent values.
        max_value : int
            Exclusive upper bound; must be positive.

        Returns
        -------
        int
            Deterministic value in ``[0, max_value)``.

        Notes
        -----
        Digests are read as big-endian integers. Values falling in the
        incomplete last bucket are rejected and the input is re-hashed with an
        increasing counter, so every index is equally likely.
        """
        if isinstance(max_value, bool) or not isinstance(max_value, int):
            raise TypeError("max_value must be an integer")
        if max_value <= 0:
            raise ValidationError("max_value must be a positive integer")

        material = f"{_normalize_hash(commit_hash)}:{_validate_seed(reveal_value)}:{salt}"
        counter = 0
        while True:
            payload = material if counter == 0 else f"{material}:{counter}"
            digest_hex = self._digest(payload.encode("utf-8"))
            space = 1 << (len(digest_hex) * 4)
            if max_value > space:
                raise ValidationError("max_value exceeds the digest range")
            limit = space - (space % max_value)
            value = int(digest_hex, 16)
            if value < limit:
                return value % max_value
            counter += 1


DEFAULT_PROTOCOL = CommitRevealProtocol()


def begin_commit(secret_seed: str) -> str:
    return DEFAULT_PROTOCOL.begin_commit(secret_seed)


def reveal(secret_seed: str) -> str:
    return DEFAULT_PROTOCOL.reveal(secret_seed)


def verify(commit_hash: str, reveal_value: str) -> bool:
    return DEFAULT_PROTOCOL.verify(commit_hash, reveal_value)


def derive_random(commit_hash: str, reveal_value: str, salt: object, max_value: int) -> int:
    return DEFAULT_PROTOCOL.derive_random(commit_hash, reveal_value, salt, max_value)


__all__ = [
    "CommitRecord",
    "CommitRevealProtocol",
    "DEFAULT_PROTOCOL",
    "RevealRecord",
    "begin_commit",
    "derive_random",
    "generate_secret_seed",
    "reveal",
    "sha256_hex",
    "verify",
]

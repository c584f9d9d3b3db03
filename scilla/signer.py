"""Keypair custody and message signing."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from threading import Lock

from loguru import logger
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from scilla.core.errors import KeyNotFound, SignerIOFailure


def read_keypair_file(path: Path) -> Keypair:
    """Read a Solana CLI keypair file (JSON array of 64 byte values).

    Raises:
        SignerIOFailure: If the file is missing or does not hold a valid keypair.
    """
    path = Path(path).expanduser()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise SignerIOFailure(path, exc.strerror or str(exc)) from exc
    except json.JSONDecodeError as exc:
        raise SignerIOFailure(path, f"not valid JSON ({exc.msg})") from exc

    if not isinstance(raw, list) or len(raw) != 64:
        raise SignerIOFailure(path, "expected a JSON array of 64 integers")
    try:
        return Keypair.from_bytes(bytes(raw))
    except (TypeError, ValueError) as exc:
        raise SignerIOFailure(path, str(exc)) from exc


class KeypairSigner:
    """Holds loaded keypairs and signs messages on their behalf.

    Secret key bytes never leave this object; callers refer to keys by their
    public key only.
    """

    def __init__(self, *keypairs: Keypair) -> None:
        self._keys: dict[Pubkey, Keypair] = {}
        self._lock = Lock()
        self._default: Pubkey | None = None
        for keypair in keypairs:
            self.add(keypair)

    @classmethod
    def from_path(cls, path: Path) -> KeypairSigner:
        signer = cls()
        signer.load(path)
        return signer

    @property
    def default(self) -> Pubkey:
        """Public key of the session keypair (the first one loaded)."""
        if self._default is None:
            raise KeyNotFound("<default>")
        return self._default

    def add(self, keypair: Keypair) -> Pubkey:
        pubkey = keypair.pubkey()
        with self._lock:
            self._keys[pubkey] = keypair
            if self._default is None:
                self._default = pubkey
        return pubkey

    def load(self, path: Path) -> Pubkey:
        """Load an additional keypair from disk and return its public key."""
        pubkey = self.add(read_keypair_file(path))
        logger.debug("Loaded keypair {} from {}", pubkey, path)
        return pubkey

    def ephemeral(self) -> Pubkey:
        """Hold a fresh keypair for an account only this session signs for."""
        pubkey = self.add(Keypair())
        logger.debug("Generated throwaway keypair {}", pubkey)
        return pubkey

    def contains(self, pubkey: Pubkey) -> bool:
        with self._lock:
            return pubkey in self._keys

    @property
    def pubkeys(self) -> list[Pubkey]:
        with self._lock:
            return list(self._keys)

    def sign(self, message: bytes, pubkey: Pubkey) -> Signature:
        """Sign ``message`` with the keypair identified by ``pubkey``.

        Raises:
            KeyNotFound: If no keypair with that public key is loaded.
        """
        with self._acquire(pubkey) as keypair:
            return keypair.sign_message(message)

    @contextmanager
    def _acquire(self, pubkey: Pubkey) -> Iterator[Keypair]:
        with self._lock:
            keypair = self._keys.get(pubkey)
            if keypair is None:
                raise KeyNotFound(pubkey)
            yield keypair

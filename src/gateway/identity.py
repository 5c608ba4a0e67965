"""
Device identity persistence.

The gateway authenticates this bridge by an Ed25519 keypair that lives for the
whole installation. The device id is the lowercase hex SHA-256 digest of the
raw 32-byte public key, so it can always be re-derived from the stored PEM.
"""

import hashlib
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

IDENTITY_FILE_VERSION = 1


@dataclass(frozen=True)
class DeviceIdentity:
    """Long-lived signing identity presented to the gateway."""

    device_id: str
    public_key_pem: str
    private_key_pem: str

    @property
    def public_key_raw(self) -> bytes:
        return derive_public_key_raw(self.public_key_pem)

    @property
    def private_key(self) -> Ed25519PrivateKey:
        loaded = serialization.load_pem_private_key(
            self.private_key_pem.encode("utf-8"), password=None
        )
        if not isinstance(loaded, Ed25519PrivateKey):
            raise ValueError("device identity private key is not Ed25519")
        return loaded


def derive_public_key_raw(public_key_pem: str) -> bytes:
    """Return the raw public key bytes, unwrapped from SPKI when it is Ed25519."""
    loaded = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
    if isinstance(loaded, Ed25519PublicKey):
        return loaded.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
    return loaded.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def derive_fingerprint(public_key: Union[str, bytes]) -> str:
    """SHA-256 hex digest of the raw public key (PEM text or raw bytes)."""
    raw = derive_public_key_raw(public_key) if isinstance(public_key, str) else public_key
    return hashlib.sha256(raw).hexdigest()


def generate_identity() -> DeviceIdentity:
    private_key = Ed25519PrivateKey.generate()
    private_key_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_key_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return DeviceIdentity(
        device_id=derive_fingerprint(public_key_pem),
        public_key_pem=public_key_pem,
        private_key_pem=private_key_pem,
    )


class DeviceIdentityStore:
    """
    Loads the device identity file, creating it on first use.

    The file is written atomically (temp file + rename) with owner-only
    permissions so concurrent readers never see a partial record.
    """

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self.logger = logger or logging.getLogger("DeviceIdentityStore")

    def load_or_create(self) -> DeviceIdentity:
        identity = self._load()
        if identity is not None:
            return identity

        identity = generate_identity()
        self._write(identity, created_at_ms=int(time.time() * 1000))
        self.logger.info(f"Created device identity {identity.device_id[:16]}... at {self.path}")
        return identity

    def _load(self) -> Optional[DeviceIdentity]:
        if not self.path.exists():
            return None

        try:
            record = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(record, dict) or record.get("version") != IDENTITY_FILE_VERSION:
                raise ValueError("unsupported identity record")

            stored_id = str(record.get("deviceId") or "")
            public_key_pem = str(record.get("publicKeyPem") or "")
            private_key_pem = str(record.get("privateKeyPem") or "")
            if not (stored_id and public_key_pem and private_key_pem):
                raise ValueError("identity record is missing fields")

            derived_id = derive_fingerprint(public_key_pem)
            identity = DeviceIdentity(
                device_id=derived_id,
                public_key_pem=public_key_pem,
                private_key_pem=private_key_pem,
            )
            paired_raw = identity.private_key.public_key().public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )
            if paired_raw != identity.public_key_raw:
                raise ValueError("private key does not match stored public key")
        except (OSError, ValueError, TypeError, UnsupportedAlgorithm) as e:
            # json.JSONDecodeError and cryptography's PEM errors are ValueErrors
            self.logger.warning(f"Discarding unreadable device identity {self.path}: {e}")
            return None

        if derived_id != stored_id:
            self.logger.info(
                f"Migrating device id {stored_id[:16]}... -> {derived_id[:16]}..."
            )
            self._write(identity, created_at_ms=record.get("createdAtMs"))

        return identity

    def _write(self, identity: DeviceIdentity, created_at_ms: Optional[int] = None) -> None:
        record = {
            "version": IDENTITY_FILE_VERSION,
            "deviceId": identity.device_id,
            "publicKeyPem": identity.public_key_pem,
            "privateKeyPem": identity.private_key_pem,
            "createdAtMs": created_at_ms if created_at_ms is not None else int(time.time() * 1000),
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            os.chmod(tmp_path, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(f"{json.dumps(record, indent=2)}\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise

"""
Signed connect handshake.

The gateway verifies the device signature against a canonical pipe-delimited
payload. Field order and the joiner are part of the wire contract:

    v1|deviceId|clientId|clientMode|role|scopes|signedAtMs|token
    v2|deviceId|clientId|clientMode|role|scopes|signedAtMs|token|nonce

v2 is used whenever the challenge carried a nonce.
"""

import base64
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import GatewayConfigError
from .identity import DeviceIdentity
from .protocol import ConnectChallenge

PROTOCOL_VERSION = 3

DEFAULT_ROLE = "operator"
DEFAULT_SCOPES = ["operator.read"]


@dataclass(frozen=True)
class ClientInfo:
    """Client descriptor sent in connect params."""

    id: str = "gateway-client"
    mode: str = "backend"
    display_name: str = "kanban-board"
    version: str = "1.0.0"
    platform: str = "python"
    locale: str = "en-US"

    @property
    def user_agent(self) -> str:
        return f"{self.display_name}/{self.version}"


def base64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def build_device_auth_payload(
    *,
    device_id: str,
    client_id: str,
    client_mode: str,
    role: str,
    scopes: List[str],
    signed_at_ms: int,
    token: Optional[str],
    nonce: Optional[str],
) -> str:
    version = "v2" if nonce else "v1"
    parts = [
        version,
        device_id,
        client_id,
        client_mode,
        role,
        ",".join(scopes),
        str(signed_at_ms),
        token or "",
    ]
    if version == "v2":
        parts.append(nonce)
    return "|".join(parts)


def sign_payload(identity: DeviceIdentity, payload: str) -> str:
    """Ed25519-sign the payload and return the unpadded base64url signature."""
    return base64url_encode(identity.private_key.sign(payload.encode("utf-8")))


def build_connect_request(
    identity: DeviceIdentity,
    challenge: Optional[ConnectChallenge],
    *,
    token: str,
    role: str = DEFAULT_ROLE,
    scopes: Optional[List[str]] = None,
    client: Optional[ClientInfo] = None,
    signed_at_ms: Optional[int] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the signed `connect` request answering a connect.challenge.

    Args:
        identity: Device identity used to sign
        challenge: Challenge from the gateway, or None for an unsolicited v1 connect
        token: Bearer token; also embedded in the signed payload
        role: Requested role
        scopes: Requested scopes, order preserved in the signature
        client: Client descriptor
        signed_at_ms: Signing time, defaults to now
        request_id: Request id, defaults to a fresh uuid4

    Returns:
        The request frame as a dict ready for json.dumps
    """
    if not token:
        raise GatewayConfigError("missing gateway token")

    client = client or ClientInfo()
    scopes = list(scopes if scopes is not None else DEFAULT_SCOPES)
    nonce = (challenge.nonce if challenge is not None else None) or ""
    if signed_at_ms is None:
        signed_at_ms = int(time.time() * 1000)

    payload = build_device_auth_payload(
        device_id=identity.device_id,
        client_id=client.id,
        client_mode=client.mode,
        role=role,
        scopes=scopes,
        signed_at_ms=signed_at_ms,
        token=token,
        nonce=nonce,
    )

    return {
        "type": "req",
        "id": request_id or str(uuid.uuid4()),
        "method": "connect",
        "params": {
            "minProtocol": PROTOCOL_VERSION,
            "maxProtocol": PROTOCOL_VERSION,
            "client": {
                "id": client.id,
                "displayName": client.display_name,
                "version": client.version,
                "platform": client.platform,
                "mode": client.mode,
            },
            "role": role,
            "scopes": scopes,
            "caps": [],
            "commands": [],
            "permissions": {},
            "auth": {"token": token},
            "locale": client.locale,
            "userAgent": client.user_agent,
            "device": {
                "id": identity.device_id,
                "publicKey": base64url_encode(identity.public_key_raw),
                "signature": sign_payload(identity, payload),
                "signedAt": signed_at_ms,
                "nonce": nonce,
            },
        },
    }

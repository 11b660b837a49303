from __future__ import annotations

import base64
from typing import Any, Dict, Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
    load_pem_public_key,
)

from .hashing import canonical


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("utf-8")

def b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("utf-8"))

def gen_ed25519() -> tuple[bytes, bytes]:
    priv = Ed25519PrivateKey.generate()
    pub = priv.public_key()
    priv_pem = priv.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    pub_pem = pub.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)
    return priv_pem, pub_pem

def sign_payload(priv_pem: bytes, payload: Dict[str, Any]) -> str:
    priv = load_pem_private_key(priv_pem, password=None)
    if not isinstance(priv, Ed25519PrivateKey):
        raise TypeError("Not an Ed25519 private key")
    sig = priv.sign(canonical(payload))
    return b64e(sig)

def verify_payload(pub_pem: bytes, payload: Dict[str, Any], sig_b64: str) -> bool:
    pub = load_pem_public_key(pub_pem)
    if not isinstance(pub, Ed25519PublicKey):
        raise TypeError("Not an Ed25519 public key")
    try:
        pub.verify(b64d(sig_b64), canonical(payload))
    except InvalidSignature:
        return False
    return True


class IdentitySigner:
    """
    Signs provenance payloads on behalf of known identities.

    identities maps identity name -> {"ed25519_priv_pem_b64", "ed25519_pub_pem_b64"}
    (the layout written by `manuscript-ledger init-identities`). Actors without
    keys produce unsigned blocks.
    """

    def __init__(self, identities: Dict[str, Dict[str, str]]):
        self.identities = identities

    def sign(self, actor: str, payload: Dict[str, Any]) -> Tuple[Dict[str, str], Optional[str]]:
        entry = self.identities.get(actor)
        if not entry:
            return {"id": actor}, None
        signer = {"id": actor, "ed25519_pub_pem_b64": entry["ed25519_pub_pem_b64"]}
        sig = sign_payload(b64d(entry["ed25519_priv_pem_b64"]), payload)
        return signer, sig

"""
Identity utilities

Every participant (owner, beneficiary, oracle, guardian, asset collection) is
addressed by a compressed secp256k1 public key in hex.
"""

import hashlib
import json
from typing import Any, Tuple

from ecdsa import BadSignatureError, SECP256k1, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError

from .errors import InvalidAddress, InvalidSignature

ZERO_IDENTITY = "00" * 33


class IdentityKey:
    """secp256k1 key pair used to act as a protocol participant"""

    def __init__(self, private_key: bytes = None):
        if private_key:
            self.private_key = SigningKey.from_string(private_key, curve=SECP256k1)
        else:
            self.private_key = SigningKey.generate(curve=SECP256k1)

        self.public_key = self.private_key.get_verifying_key()

    @property
    def identity(self) -> str:
        """Compressed public key in hex"""
        return self.public_key.to_string("compressed").hex()

    def sign_message(self, message: bytes) -> str:
        """Sign message and return signature in hex"""
        signature = self.private_key.sign(message, hashfunc=hashlib.sha256)
        return signature.hex()

    def sign_payload(self, payload: Any) -> str:
        return self.sign_message(canonical_bytes(payload))

    @staticmethod
    def generate_key_pair() -> Tuple[str, str]:
        """Generate new key pair and return (private_key_hex, identity_hex)"""
        key = IdentityKey()
        return key.private_key.to_string().hex(), key.identity

    @classmethod
    def from_hex(cls, private_hex: str) -> 'IdentityKey':
        return cls(bytes.fromhex(private_hex))


def _load_verifying_key(identity: str) -> VerifyingKey:
    raw = bytes.fromhex(identity)
    if len(raw) != 33:
        raise ValueError("identity must be a 33-byte compressed public key")
    return VerifyingKey.from_string(raw, curve=SECP256k1)


def is_valid_identity(identity: str) -> bool:
    """Check that identity decodes to a point on secp256k1"""
    if not isinstance(identity, str) or identity == ZERO_IDENTITY:
        return False
    try:
        _load_verifying_key(identity)
    except (ValueError, MalformedPointError):
        return False
    return True


def require_identity(identity: str, role: str = "identity") -> str:
    if not is_valid_identity(identity):
        raise InvalidAddress(
            f"Invalid {role}: {str(identity)[:16]}...",
            details={"role": role},
        )
    return identity


def canonical_bytes(payload: Any) -> bytes:
    """Deterministic JSON encoding used for signed requests"""
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()


def verify_signature(identity: str, message: bytes, signature_hex: str) -> bool:
    """Verify signature against message and compressed public key"""
    try:
        vk = _load_verifying_key(identity)
        return vk.verify(bytes.fromhex(signature_hex), message, hashfunc=hashlib.sha256)
    except (ValueError, MalformedPointError, BadSignatureError):
        return False


def require_signature(identity: str, payload: Any, signature_hex: str) -> None:
    if not verify_signature(identity, canonical_bytes(payload), signature_hex):
        raise InvalidSignature(
            "Request signature does not match caller identity",
            details={"identity": identity[:16]},
        )


def short(identity: str) -> str:
    """Shortened identity for log lines"""
    return f"{identity[:8]}..." if identity else "<none>"

# Version History
# v1.0 - VAPID key import, ES256 JWT signing and DER signature normalisation.

"""VAPID helpers for Web Push.

Everything here is pure and network-free. The private key arrives as the raw
base64url scalar the browser tooling prints, and the public key as the 65-byte
uncompressed point, so both are turned into a P-256 key through its JWK form
rather than PEM.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from functools import lru_cache
from urllib.parse import urlsplit

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from errors import ConfigurationError, SignatureFormatError

JWT_LIFETIME_SECONDS = 12 * 60 * 60
COORDINATE_SIZE = 32
JWT_HEADER = {"alg": "ES256", "typ": "JWT"}
DEFAULT_PORTS = {"https": 443, "http": 80}


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _int_from_b64url(text: str) -> int:
    return int.from_bytes(b64url_decode(text), "big")


class SigningKey:
    """ECDSA P-256 / SHA-256 signing handle built from a JWK."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey) -> None:
        self._key = private_key

    @classmethod
    def from_jwk(cls, jwk: dict[str, str]) -> "SigningKey":
        if jwk.get("kty") != "EC" or jwk.get("crv") != "P-256":
            raise ValueError("only EC P-256 keys are supported")
        public_numbers = ec.EllipticCurvePublicNumbers(
            _int_from_b64url(jwk["x"]), _int_from_b64url(jwk["y"]), ec.SECP256R1()
        )
        private_numbers = ec.EllipticCurvePrivateNumbers(_int_from_b64url(jwk["d"]), public_numbers)
        return cls(private_numbers.private_key())

    def sign(self, data: bytes) -> bytes:
        return self._key.sign(data, ec.ECDSA(hashes.SHA256()))

    def public_jwk(self) -> dict[str, str]:
        numbers = self._key.public_key().public_numbers()
        return {
            "kty": "EC",
            "crv": "P-256",
            "x": b64url_encode(numbers.x.to_bytes(COORDINATE_SIZE, "big")),
            "y": b64url_encode(numbers.y.to_bytes(COORDINATE_SIZE, "big")),
        }


def import_signing_key(private_key_b64: str, public_key_b64: str) -> SigningKey:
    if not public_key_b64:
        raise ConfigurationError("VAPID_PUBLIC_KEY missing or invalid")
    if not private_key_b64:
        raise ConfigurationError("VAPID_PRIVATE_KEY missing or invalid")

    try:
        raw = b64url_decode(public_key_b64)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError("VAPID_PUBLIC_KEY missing or invalid") from exc

    if len(raw) == 65 and raw[0] == 0x04:
        raw = raw[1:]
    if len(raw) != 2 * COORDINATE_SIZE:
        raise ConfigurationError(f"Unexpected public key length: {len(raw)}")

    jwk = {
        "kty": "EC",
        "crv": "P-256",
        "x": b64url_encode(raw[:COORDINATE_SIZE]),
        "y": b64url_encode(raw[COORDINATE_SIZE:]),
        "d": private_key_b64,
    }
    try:
        return SigningKey.from_jwk(jwk)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(f"VAPID key import failed: {exc}") from exc


def derive_public_key(key: SigningKey) -> str:
    """Rebuild the uncompressed ``0x04||X||Y`` point from the key's own JWK."""
    jwk = key.public_jwk()
    point = b"\x04" + b64url_decode(jwk["x"]) + b64url_decode(jwk["y"])
    return b64url_encode(point)


@lru_cache(maxsize=8)
def load_key_pair(private_key_b64: str, public_key_b64: str) -> tuple[SigningKey, str]:
    key = import_signing_key(private_key_b64, public_key_b64)
    return key, derive_public_key(key)


def generate_key_pair() -> tuple[str, str]:
    """Return a fresh ``(private_b64, public_b64)`` pair for VAPID_* env vars."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    private_bytes = private_key.private_numbers().private_value.to_bytes(COORDINATE_SIZE, "big")
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    return b64url_encode(private_bytes), b64url_encode(public_bytes)


def _read_length(data: bytes, pos: int) -> tuple[int, int]:
    if pos >= len(data):
        raise SignatureFormatError("DER length truncated")
    first = data[pos]
    pos += 1
    if first < 0x80:
        return first, pos

    count = first & 0x7F
    if count == 0 or count > 4 or pos + count > len(data):
        raise SignatureFormatError(f"Bad DER long-form length byte: {first:#x}")
    return int.from_bytes(data[pos:pos + count], "big"), pos + count


def _read_integer(data: bytes, pos: int) -> tuple[bytes, int]:
    if pos >= len(data) or data[pos] != 0x02:
        raise SignatureFormatError("Expected DER INTEGER")
    length, pos = _read_length(data, pos + 1)
    value = data[pos:pos + length]
    if length == 0 or len(value) != length:
        raise SignatureFormatError("DER INTEGER truncated")

    # one 0x00 is prepended when the high bit of the first value byte is set
    if len(value) > 1 and value[0] == 0x00:
        value = value[1:]
    if len(value) > COORDINATE_SIZE:
        raise SignatureFormatError(f"DER INTEGER too long: {len(value)} bytes")
    return value.rjust(COORDINATE_SIZE, b"\x00"), pos + length


def der_to_raw(signature: bytes) -> bytes:
    """Convert ``SEQUENCE{INTEGER r, INTEGER s}`` into 64 bytes ``r||s``."""
    if not signature or signature[0] != 0x30:
        raise SignatureFormatError("Expected DER SEQUENCE")
    length, pos = _read_length(signature, 1)
    if pos + length != len(signature):
        raise SignatureFormatError("DER SEQUENCE length mismatch")

    r, pos = _read_integer(signature, pos)
    s, pos = _read_integer(signature, pos)
    if pos != len(signature):
        raise SignatureFormatError("Trailing bytes after DER signature")
    return r + s


def normalize_signature(signature: bytes) -> bytes:
    raw_size = 2 * COORDINATE_SIZE
    if signature[:1] == b"\x30":
        if len(signature) != raw_size:
            return der_to_raw(signature)
        # a raw r||s can start with 0x30 too
        try:
            return der_to_raw(signature)
        except SignatureFormatError:
            return signature
    if len(signature) == raw_size:
        return signature
    raise SignatureFormatError(f"Unrecognised signature encoding ({len(signature)} bytes)")


def _compact_json(value: dict) -> bytes:
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


def sign_vapid_jwt(
    key: SigningKey,
    audience: str,
    subject: str,
    now: float | None = None,
) -> str:
    issued = int(time.time() if now is None else now)
    claims = {"aud": audience, "exp": issued + JWT_LIFETIME_SECONDS, "sub": subject}
    signing_input = f"{b64url_encode(_compact_json(JWT_HEADER))}.{b64url_encode(_compact_json(claims))}"
    signature = normalize_signature(key.sign(signing_input.encode("utf-8")))
    return f"{signing_input}.{b64url_encode(signature)}"


def endpoint_audience(endpoint: str) -> str:
    parts = urlsplit(endpoint)
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    if parts.port is not None and parts.port != DEFAULT_PORTS.get(parts.scheme):
        host = f"{host}:{parts.port}"
    return f"{parts.scheme}://{host}"

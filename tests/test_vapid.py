"""VAPID key import, JWT signing and DER signature normalisation."""
import json
import time

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from errors import ConfigurationError, SignatureFormatError
from vapid import (
    b64url_decode,
    b64url_encode,
    der_to_raw,
    derive_public_key,
    endpoint_audience,
    generate_key_pair,
    import_signing_key,
    normalize_signature,
    sign_vapid_jwt,
)


def test_derived_public_key_matches_configured_key(vapid_keys):
    private_key, public_key = vapid_keys
    key = import_signing_key(private_key, public_key)
    assert derive_public_key(key) == public_key
    assert b64url_decode(derive_public_key(key)) == b64url_decode(public_key)


def test_import_accepts_bare_coordinates(vapid_keys):
    private_key, public_key = vapid_keys
    coordinates = b64url_encode(b64url_decode(public_key)[1:])
    key = import_signing_key(private_key, coordinates)
    assert derive_public_key(key) == public_key


def test_import_rejects_empty_public_key(vapid_keys):
    with pytest.raises(ConfigurationError, match="VAPID_PUBLIC_KEY missing or invalid"):
        import_signing_key(vapid_keys[0], "")


def test_import_rejects_compressed_public_key(vapid_keys):
    compressed = b64url_encode(b"\x02" + b"\x11" * 32)
    with pytest.raises(ConfigurationError, match="Unexpected public key length: 33"):
        import_signing_key(vapid_keys[0], compressed)


def test_import_rejects_mismatched_pair(vapid_keys):
    other_private, _ = generate_key_pair()
    with pytest.raises(ConfigurationError):
        import_signing_key(other_private, vapid_keys[1])


def test_raw_signature_is_returned_unchanged():
    raw = bytes(range(1, 65))
    assert normalize_signature(raw) == raw
    looks_like_der = b"\x30" + b"\x01" * 63
    assert normalize_signature(looks_like_der) == looks_like_der


def test_der_signature_with_high_bit_and_short_integer():
    r = int.from_bytes(b"\x80" + b"\x01" * 31, "big")
    s = 0x05
    der = encode_dss_signature(r, s)
    assert der[3] == 33  # r carries a 0x00 sign byte

    raw = normalize_signature(der)
    assert len(raw) == 64
    assert raw[:32] == r.to_bytes(32, "big")
    assert raw[32:] == b"\x00" * 31 + b"\x05"


def test_der_long_form_lengths():
    r = b"\x00" + b"\xff" * 32
    s = b"\x00" + b"\xee" * 32
    body = b"\x02\x81" + bytes([len(r)]) + r + b"\x02" + bytes([len(s)]) + s
    der = b"\x30\x81" + bytes([len(body)]) + body
    assert der_to_raw(der) == b"\xff" * 32 + b"\xee" * 32


@pytest.mark.parametrize(
    "signature",
    [
        b"\x30\x06\x02\x01\x01\x02",  # truncated second integer
        b"\x30\x03\x05\x01\x00",  # not an INTEGER
        b"\x30\x80\x02\x01\x01\x02\x01\x01",  # indefinite length
        b"\x01\x02\x03",
    ],
)
def test_malformed_signatures_are_rejected(signature):
    with pytest.raises(SignatureFormatError):
        normalize_signature(signature)


def test_integer_longer_than_coordinate_is_rejected():
    r = b"\x01" * 33
    body = b"\x02\x21" + r + b"\x02\x01\x01"
    with pytest.raises(SignatureFormatError):
        der_to_raw(b"\x30" + bytes([len(body)]) + body)


def test_jwt_structure_and_signature(vapid_keys):
    private_key, public_key = vapid_keys
    key = import_signing_key(private_key, public_key)
    now = time.time()

    token = sign_vapid_jwt(key, "https://fcm.googleapis.com", "mailto:ops@gridlead.test")
    segments = token.split(".")
    assert len(segments) == 3
    assert "=" not in token

    header = json.loads(b64url_decode(segments[0]))
    claims = json.loads(b64url_decode(segments[1]))
    assert header == {"alg": "ES256", "typ": "JWT"}
    assert claims["aud"] == "https://fcm.googleapis.com"
    assert claims["sub"] == "mailto:ops@gridlead.test"
    assert now + 43199 <= claims["exp"] <= now + 43201

    signature = b64url_decode(segments[2])
    assert len(signature) == 64
    verifier = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), b64url_decode(public_key))
    verifier.verify(
        encode_dss_signature(int.from_bytes(signature[:32], "big"), int.from_bytes(signature[32:], "big")),
        f"{segments[0]}.{segments[1]}".encode(),
        ec.ECDSA(hashes.SHA256()),
    )


def test_jwt_expiry_is_fixed(vapid_keys):
    key = import_signing_key(*vapid_keys)
    token = sign_vapid_jwt(key, "https://updates.push.services.mozilla.com", "mailto:a@b.c", now=1_700_000_000)
    claims = json.loads(b64url_decode(token.split(".")[1]))
    assert claims["exp"] == 1_700_000_000 + 43200


@pytest.mark.parametrize(
    "endpoint,audience",
    [
        ("https://fcm.googleapis.com/fcm/send/abc", "https://fcm.googleapis.com"),
        ("https://push.example.com:8443/wpush/v2/xyz?x=1", "https://push.example.com:8443"),
        ("http://localhost:9000/push", "http://localhost:9000"),
        ("https://fcm.googleapis.com:443/fcm/send/abc", "https://fcm.googleapis.com"),
        ("http://push.example.com:80/x", "http://push.example.com"),
        ("https://[::1]:8443/push", "https://[::1]:8443"),
        ("https://[2001:db8::1]/push", "https://[2001:db8::1]"),
    ],
)
def test_endpoint_audience(endpoint, audience):
    assert endpoint_audience(endpoint) == audience

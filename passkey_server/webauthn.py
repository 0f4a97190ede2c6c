"""Decoding of WebAuthn structures and COSE signature verification."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, Iterable, Mapping, Optional

import cbor2
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from fido2.cose import ES256, PS256, RS256, CoseKey, EdDSA, UnsupportedKey

from .errors import (
    MalformedResponse,
    OriginMismatch,
    RelyingPartyMismatch,
    SignatureInvalid,
    UnsupportedAlgorithm,
)

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40

# COSE kty required by each verifiable algorithm
KEY_TYPES = {
    ES256.ALGORITHM: 2,
    EdDSA.ALGORITHM: 1,
    RS256.ALGORITHM: 3,
    PS256.ALGORITHM: 3,
}
EC2_CURVES = {1: ec.SECP256R1}
OKP_ED25519 = 6


def b64url_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).decode("ascii").rstrip("=")


def b64url_decode(value: str | None, field: str = "value") -> bytes:
    if not value or not isinstance(value, str):
        raise MalformedResponse(f"Missing {field}")
    padding = "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(value + padding)
    except (binascii.Error, ValueError) as exc:
        raise MalformedResponse(f"Invalid base64url in {field}") from exc


@dataclass(frozen=True)
class ClientData:
    type: str
    challenge: str
    origin: str
    raw: bytes

    @property
    def hash(self) -> bytes:
        return hashlib.sha256(self.raw).digest()


@dataclass(frozen=True)
class AuthenticatorData:
    rp_id_hash: bytes
    flags: int
    sign_count: int
    aaguid: Optional[bytes] = None
    credential_id: Optional[bytes] = None
    credential_public_key: Optional[Dict[int, Any]] = None
    credential_public_key_bytes: Optional[bytes] = None

    @property
    def user_present(self) -> bool:
        return bool(self.flags & FLAG_UP)

    @property
    def user_verified(self) -> bool:
        return bool(self.flags & FLAG_UV)


def parse_client_data(encoded: str | None) -> ClientData:
    raw = b64url_decode(encoded, "clientDataJSON")
    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedResponse("clientDataJSON is not valid JSON") from exc
    if not isinstance(data, dict):
        raise MalformedResponse("clientDataJSON must be an object")
    fields = {}
    for key in ("type", "challenge", "origin"):
        value = data.get(key)
        if not isinstance(value, str):
            raise MalformedResponse(f"clientDataJSON is missing {key}")
        fields[key] = value
    return ClientData(raw=raw, **fields)


def parse_authenticator_data(data: bytes) -> AuthenticatorData:
    if len(data) < 37:
        raise MalformedResponse("Authenticator data too short")
    idx = 0
    rp_id_hash = data[idx : idx + 32]
    idx += 32
    flags = data[idx]
    idx += 1
    sign_count = int.from_bytes(data[idx : idx + 4], "big")
    idx += 4

    if not flags & FLAG_AT:
        return AuthenticatorData(rp_id_hash=rp_id_hash, flags=flags, sign_count=sign_count)

    if len(data) < idx + 18:
        raise MalformedResponse("Malformed attested credential data")
    aaguid = data[idx : idx + 16]
    idx += 16
    cred_len = int.from_bytes(data[idx : idx + 2], "big")
    idx += 2
    if len(data) < idx + cred_len:
        raise MalformedResponse("Credential ID overruns authenticator data")
    credential_id = data[idx : idx + cred_len]
    idx += cred_len
    stream = BytesIO(data[idx:])
    try:
        credential_public_key = cbor2.CBORDecoder(stream).decode()
    except (cbor2.CBORDecodeError, ValueError) as exc:
        raise MalformedResponse("Credential public key is not valid CBOR") from exc
    if not isinstance(credential_public_key, dict):
        raise MalformedResponse("Credential public key must be a COSE map")
    key_end = idx + stream.tell()
    return AuthenticatorData(
        rp_id_hash=rp_id_hash,
        flags=flags,
        sign_count=sign_count,
        aaguid=aaguid,
        credential_id=credential_id,
        credential_public_key=credential_public_key,
        credential_public_key_bytes=data[idx:key_end],
    )


def parse_attestation_object(encoded: str | None) -> Dict[str, Any]:
    raw = b64url_decode(encoded, "attestationObject")
    try:
        attestation = cbor2.loads(raw)
    except (cbor2.CBORDecodeError, ValueError) as exc:
        raise MalformedResponse("attestationObject is not valid CBOR") from exc
    if not isinstance(attestation, dict):
        raise MalformedResponse("attestationObject must be a map")
    if not isinstance(attestation.get("authData"), (bytes, bytearray)):
        raise MalformedResponse("Invalid authenticator data")
    if not isinstance(attestation.get("fmt"), str):
        raise MalformedResponse("Missing attestation format")
    statement = attestation.get("attStmt", {})
    if not isinstance(statement, dict):
        raise MalformedResponse("Invalid attestation statement")
    return {"fmt": attestation["fmt"], "authData": bytes(attestation["authData"]), "attStmt": statement}


def check_relying_party(
    client_data: ClientData,
    auth_data: AuthenticatorData,
    expected_origin: str,
    expected_rp_id: str,
) -> None:
    if client_data.origin != expected_origin:
        raise OriginMismatch(f"Unexpected origin {client_data.origin!r}")
    expected_hash = hashlib.sha256(expected_rp_id.encode("idna")).digest()
    if not hmac.compare_digest(auth_data.rp_id_hash, expected_hash):
        raise RelyingPartyMismatch("RP ID hash does not match")


def _key_int(value: Any) -> int:
    if not isinstance(value, (bytes, bytearray)) or not value:
        raise TypeError("COSE key parameter must be a non-empty byte string")
    return int.from_bytes(value, "big")


def _public_key(cose: Mapping[int, Any]) -> Any:
    """Build the cryptography public key described by a COSE map.

    Raises ``KeyError``, ``TypeError`` or ``ValueError`` when a parameter is
    missing or the numbers do not form a valid key, such as an off-curve point.
    """
    key_type = cose[1]
    if key_type == 2:
        curve = EC2_CURVES[cose[-1]]()
        return ec.EllipticCurvePublicNumbers(_key_int(cose[-2]), _key_int(cose[-3]), curve).public_key()
    if key_type == 1:
        if cose[-1] != OKP_ED25519:
            raise ValueError(f"Unsupported OKP curve {cose[-1]!r}")
        encoded = cose[-2]
        if not isinstance(encoded, (bytes, bytearray)):
            raise TypeError("OKP public key must be a byte string")
        return ed25519.Ed25519PublicKey.from_public_bytes(bytes(encoded))
    if key_type == 3:
        return rsa.RSAPublicNumbers(_key_int(cose[-2]), _key_int(cose[-1])).public_key()
    raise ValueError(f"Unsupported key type {key_type!r}")


def load_cose_key(cose: Mapping[int, Any], supported: Iterable[int]) -> CoseKey:
    algorithm = cose.get(3)
    if algorithm not in set(supported) or algorithm not in KEY_TYPES:
        raise UnsupportedAlgorithm(f"Unsupported algorithm {algorithm!r}")
    key = CoseKey.parse(dict(cose))
    if isinstance(key, UnsupportedKey):
        raise UnsupportedAlgorithm(f"Unsupported algorithm {algorithm!r}")
    if cose.get(1) != KEY_TYPES[algorithm]:
        raise MalformedResponse(f"Key type {cose.get(1)!r} does not match algorithm {algorithm}")
    try:
        _public_key(cose)
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedResponse("Invalid credential public key") from exc
    return key


def verify_signature(key: CoseKey, auth_data: bytes, client_data_hash: bytes, signature: bytes) -> None:
    """Check ``signature`` over ``authData || SHA-256(clientDataJSON)``."""
    try:
        key.verify(auth_data + client_data_hash, signature)
    except (InvalidSignature, ValueError) as exc:
        raise SignatureInvalid("Signature verification failed") from exc


def verify_attestation_statement(
    fmt: str,
    statement: Mapping[str, Any],
    credential_key: CoseKey,
    auth_data: bytes,
    client_data_hash: bytes,
) -> str:
    """Verify the attestation signature where one can be checked without a trust chain.

    Returns the attestation type that was accepted.
    """
    if fmt == "none":
        if statement:
            raise MalformedResponse("Attestation format 'none' requires an empty statement")
        return "none"
    if fmt != "packed":
        return "none"

    signature = statement.get("sig")
    if not isinstance(signature, (bytes, bytearray)):
        raise MalformedResponse("Packed attestation is missing its signature")
    algorithm = statement.get("alg")
    x5c = statement.get("x5c")
    if not x5c:
        if algorithm != credential_key.ALGORITHM:
            raise SignatureInvalid("Self attestation algorithm does not match credential key")
        verify_signature(credential_key, auth_data, client_data_hash, bytes(signature))
        return "self"

    if not isinstance(x5c, list) or not isinstance(x5c[0], (bytes, bytearray)):
        raise MalformedResponse("Attestation certificate chain must be a list of DER certificates")
    try:
        certificate = x509.load_der_x509_certificate(bytes(x5c[0]))
        attestation_key = CoseKey.for_alg(algorithm).from_cryptography_key(
            certificate.public_key()
        )
    except (TypeError, ValueError, NotImplementedError) as exc:
        raise MalformedResponse("Unreadable attestation certificate") from exc
    verify_signature(attestation_key, auth_data, client_data_hash, bytes(signature))
    return "basic"

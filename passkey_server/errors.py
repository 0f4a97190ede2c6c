"""Typed failures raised by the ceremony engine and session issuer."""

from __future__ import annotations


class PasskeyError(RuntimeError):
    """Base class for every expected failure in the server."""

    code = "error"
    status = 400

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self.args[0])


class CeremonyError(PasskeyError):
    """Ceremony verification failed."""

    code = "ceremony_failed"


class NotFound(CeremonyError):
    """User not found."""

    code = "not_found"
    status = 404


class NoCredentials(NotFound):
    """User has no registered credentials."""

    code = "no_credentials"


class Conflict(CeremonyError):
    """Resource already exists."""

    code = "conflict"
    status = 409


class ChallengeMismatch(CeremonyError):
    """Challenge does not match the pending challenge."""

    code = "challenge_mismatch"


class ChallengeExpired(ChallengeMismatch):
    """Challenge has expired."""

    code = "challenge_expired"


class OriginMismatch(CeremonyError):
    """Unexpected origin in client data."""

    code = "origin_mismatch"


class RelyingPartyMismatch(CeremonyError):
    """Unexpected relying party identifier."""

    code = "rp_id_mismatch"


class MalformedResponse(CeremonyError):
    """Credential response could not be decoded."""

    code = "malformed_response"


class UnsupportedAlgorithm(CeremonyError):
    """Credential uses an unsupported signature algorithm."""

    code = "unsupported_algorithm"


class SignatureInvalid(CeremonyError):
    """Signature verification failed."""

    code = "signature_invalid"


class UnrecognizedCredential(CeremonyError):
    """Credential is not registered to this user."""

    code = "unrecognized_credential"


class PossibleCloneDetected(CeremonyError):
    """Signature counter did not increase; the credential may be cloned."""

    code = "possible_clone_detected"
    status = 403


class SessionError(PasskeyError):
    """Session token rejected."""

    code = "session_error"


class Unauthorized(SessionError):
    """Missing bearer token."""

    code = "unauthorized"
    status = 401


class Forbidden(SessionError):
    """Bearer token rejected."""

    code = "forbidden"
    status = 403


class TokenExpired(Forbidden):
    """Bearer token has expired."""

    code = "token_expired"


class TokenInvalid(Forbidden):
    """Bearer token is invalid."""

    code = "token_invalid"

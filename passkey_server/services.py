"""Registration and authentication ceremony verifiers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

import cbor2
from sqlalchemy.orm import Session

from .challenges import AUTHENTICATION, REGISTRATION, ChallengeStore
from .config import RPSettings
from .errors import (
    CeremonyError,
    MalformedResponse,
    NoCredentials,
    NotFound,
    PossibleCloneDetected,
    UnrecognizedCredential,
)
from .models import Authenticator, User
from .registry import CredentialRegistry
from .webauthn import (
    b64url_decode,
    b64url_encode,
    check_relying_party,
    load_cose_key,
    parse_attestation_object,
    parse_authenticator_data,
    parse_client_data,
    verify_attestation_statement,
    verify_signature,
)

LOGGER = logging.getLogger(__name__)


@dataclass
class CeremonyResult:
    verified: bool
    credential: Optional[Authenticator] = None
    error: Optional[str] = None
    message: Optional[str] = None
    status: int = 200

    @classmethod
    def failure(cls, exc: CeremonyError) -> "CeremonyResult":
        return cls(verified=False, error=exc.code, message=exc.message, status=exc.status)


def counter_advanced(stored: int, reported: int) -> bool:
    """Whether ``reported`` is an acceptable successor of ``stored``.

    Authenticators without a counter report 0 on every use, so 0 after 0
    is accepted.
    """
    if stored == 0 and reported == 0:
        return True
    return reported > stored


def _response_fields(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    response = payload.get("response")
    if not isinstance(response, Mapping):
        raise MalformedResponse("Missing response")
    return response


def _transports(response: Mapping[str, Any]) -> List[str]:
    transports = response.get("transports") or []
    if not isinstance(transports, list):
        return []
    return [value for value in transports if isinstance(value, str)]


class RegistrationVerifier:
    def __init__(self, settings: RPSettings, challenges: ChallengeStore) -> None:
        self.settings = settings
        self.challenges = challenges

    def issue_challenge(self, session: Session, username: str) -> tuple[User, str, List[Authenticator]]:
        registry = CredentialRegistry(session)
        user = registry.ensure_pending_user(username)
        challenge = self.challenges.issue(registry, user, REGISTRATION)
        return user, challenge, registry.list_credentials(user)

    def verify(self, session: Session, username: str, payload: Mapping[str, Any]) -> CeremonyResult:
        try:
            credential = self._verify(CredentialRegistry(session), username, payload)
        except CeremonyError as exc:
            # nothing from a failed ceremony may persist
            session.rollback()
            LOGGER.warning("Registration for %s failed: %s (%s)", username, exc.message, exc.code)
            return CeremonyResult.failure(exc)
        LOGGER.info("Registered credential %s for %s", credential.credential_id, username)
        return CeremonyResult(verified=True, credential=credential)

    def _verify(
        self, registry: CredentialRegistry, username: str, payload: Mapping[str, Any]
    ) -> Authenticator:
        user = registry.find_user(username)
        if user is None:
            raise NotFound("User not found")

        response = _response_fields(payload)
        client_data = parse_client_data(response.get("clientDataJSON"))
        if client_data.type != "webauthn.create":
            raise MalformedResponse(f"Unexpected client data type {client_data.type!r}")
        attestation = parse_attestation_object(response.get("attestationObject"))
        auth_data_bytes = attestation["authData"]
        auth_data = parse_authenticator_data(auth_data_bytes)
        check_relying_party(client_data, auth_data, self.settings.origin, self.settings.rp_id)
        if not auth_data.user_present:
            raise MalformedResponse("User presence flag not set")

        self.challenges.consume(registry, user, client_data.challenge, REGISTRATION)

        if auth_data.credential_id is None or auth_data.credential_public_key is None:
            raise MalformedResponse("Missing attested credential data")
        credential_id = b64url_encode(auth_data.credential_id)
        declared_id = payload.get("id")
        if declared_id is not None and declared_id != credential_id:
            raise MalformedResponse("Credential ID does not match authenticator data")

        key = load_cose_key(auth_data.credential_public_key, self.settings.supported_algorithms)
        attestation_type = verify_attestation_statement(
            attestation["fmt"],
            attestation["attStmt"],
            key,
            auth_data_bytes,
            client_data.hash,
        )
        LOGGER.debug("Accepted %s attestation (%s) for %s", attestation_type, attestation["fmt"], username)

        return registry.add_credential(
            user,
            credential_id,
            auth_data.credential_public_key_bytes,
            auth_data.sign_count,
            _transports(response),
        )


class AuthenticationVerifier:
    def __init__(self, settings: RPSettings, challenges: ChallengeStore) -> None:
        self.settings = settings
        self.challenges = challenges

    def issue_challenge(self, session: Session, username: str) -> tuple[User, str, List[Authenticator]]:
        registry = CredentialRegistry(session)
        user = registry.find_user(username)
        if user is None:
            raise NotFound("User not found")
        credentials = registry.list_credentials(user)
        if not credentials:
            raise NoCredentials("No authenticators registered")
        challenge = self.challenges.issue(registry, user, AUTHENTICATION)
        return user, challenge, credentials

    def verify(self, session: Session, username: str, payload: Mapping[str, Any]) -> CeremonyResult:
        try:
            credential = self._verify(CredentialRegistry(session), username, payload)
        except PossibleCloneDetected as exc:
            session.rollback()
            LOGGER.error("Possible cloned credential for %s: %s", username, exc.message)
            return CeremonyResult.failure(exc)
        except CeremonyError as exc:
            session.rollback()
            LOGGER.warning("Authentication for %s failed: %s (%s)", username, exc.message, exc.code)
            return CeremonyResult.failure(exc)
        LOGGER.info(
            "Authenticated %s with credential %s (counter=%s)",
            username,
            credential.credential_id,
            credential.counter,
        )
        return CeremonyResult(verified=True, credential=credential)

    def _verify(
        self, registry: CredentialRegistry, username: str, payload: Mapping[str, Any]
    ) -> Authenticator:
        user = registry.find_user(username)
        if user is None:
            raise NotFound("User not found")
        if not registry.list_credentials(user):
            raise NoCredentials("No authenticators registered")

        credential_id = payload.get("id")
        if not isinstance(credential_id, str) or not credential_id:
            raise MalformedResponse("Missing credential id")
        credential = registry.find_credential(user, credential_id)
        if credential is None:
            raise UnrecognizedCredential("Authenticator not recognized")

        response = _response_fields(payload)
        client_data = parse_client_data(response.get("clientDataJSON"))
        self.challenges.consume(registry, user, client_data.challenge, AUTHENTICATION)

        if client_data.type != "webauthn.get":
            raise MalformedResponse(f"Unexpected client data type {client_data.type!r}")
        auth_data_bytes = b64url_decode(response.get("authenticatorData"), "authenticatorData")
        auth_data = parse_authenticator_data(auth_data_bytes)
        check_relying_party(client_data, auth_data, self.settings.origin, self.settings.rp_id)
        if not auth_data.user_present:
            raise MalformedResponse("User presence flag not set")

        try:
            stored_key = cbor2.loads(credential.credential_public_key)
        except (cbor2.CBORDecodeError, ValueError) as exc:
            # a corrupt stored key is an internal fault, not a ceremony failure
            raise RuntimeError(f"Stored key for {credential.credential_id} is corrupt") from exc
        key = load_cose_key(stored_key, self.settings.supported_algorithms)
        signature = b64url_decode(response.get("signature"), "signature")
        verify_signature(key, auth_data_bytes, client_data.hash, signature)

        if not counter_advanced(credential.counter, auth_data.sign_count):
            raise PossibleCloneDetected(
                f"Counter {auth_data.sign_count} does not exceed stored {credential.counter}"
            )
        registry.update_counter(credential, auth_data.sign_count)
        return credential

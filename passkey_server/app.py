"""Flask application exposing the passkey ceremony endpoints."""

from __future__ import annotations

import json
import logging
import secrets

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from .challenges import ChallengeStore
from .config import RPSettings
from .database import Database
from .errors import PasskeyError
from .schemas import (
    AuthenticationOptions,
    LoginChallengeRequest,
    LoginVerifyRequest,
    ProfileResponse,
    PubKeyCredParam,
    PublicKeyCredentialDescriptor,
    RegisterChallengeRequest,
    RegisterVerifyRequest,
    RegistrationOptions,
    RelyingPartyEntity,
    RPResponse,
    UserEntity,
    VerificationResponse,
)
from .services import AuthenticationVerifier, CeremonyResult, RegistrationVerifier
from .sessions import SessionIssuer
from .webauthn import b64url_encode

LOGGER = logging.getLogger(__name__)

STAGE_LABELS = {
    "register": "Register",
    "login": "Login",
    "profile": "Profile",
}

EVENT_LABELS = {
    ("register", "challenge.start"): "Creating Registration Challenge",
    ("register", "challenge.success"): "Issued Registration Challenge",
    ("register", "verify.start"): "Verifying Registration",
    ("register", "verify.failed"): "Registration Rejected",
    ("register", "verify.success"): "Registration Completed",
    ("login", "challenge.start"): "Creating Login Challenge",
    ("login", "challenge.success"): "Issued Login Challenge",
    ("login", "verify.start"): "Verifying Login",
    ("login", "verify.failed"): "Login Rejected",
    ("login", "verify.success"): "Login Completed",
    ("profile", "denied"): "Profile Access Denied",
}


def _truncate(value: str, limit: int = 64) -> str:
    if len(value) <= limit:
        return value
    half = limit // 2
    return f"{value[:half]}…{value[-half:]}"


def _build_payload(req: str, **fields: object) -> dict[str, object]:
    payload: dict[str, object] = {"request_id": req}
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, str):
            payload[key] = _truncate(value)
        else:
            payload[key] = value
    return payload


def _log(stage: str, event: str, req: str, level: int = logging.INFO, **fields: object) -> None:
    stage_label = STAGE_LABELS.get(stage, stage.title())
    event_label = EVENT_LABELS.get((stage, event), event)
    payload = json.dumps(_build_payload(req, **fields), indent=2, sort_keys=True)
    message = f"[Passkey Server: {stage_label}]: {event_label}\n{payload}"
    LOGGER.log(level, message)


def _error(status: int, code: str, message: str):
    return jsonify(RPResponse(success=False, error=code, message=message).model_dump()), status


def _ceremony_reply(result: CeremonyResult, token: str | None = None):
    body = VerificationResponse(
        verified=result.verified,
        token=token,
        error=result.error,
        message=result.message,
    ).model_dump(exclude_none=True)
    return jsonify(body), result.status


def create_app(settings: RPSettings | None = None) -> Flask:
    settings = settings or RPSettings()
    db = Database(settings)
    db.create_all()
    challenge_store = ChallengeStore(ttl_seconds=settings.challenge_ttl_seconds)
    registration = RegistrationVerifier(settings, challenge_store)
    authentication = AuthenticationVerifier(settings, challenge_store)
    session_issuer = SessionIssuer(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        ttl_seconds=settings.token_ttl_seconds,
    )
    if "jwt_secret" not in settings.model_fields_set:
        LOGGER.warning("PASSKEY_JWT_SECRET is not set; tokens will not survive a restart")

    app = Flask(__name__)
    app.extensions["passkey_server"] = {
        "settings": settings,
        "db": db,
        "challenges": challenge_store,
        "sessions": session_issuer,
    }
    CORS(app, origins=[settings.origin])

    @app.post("/register-challenge")
    def register_challenge():
        payload = RegisterChallengeRequest.model_validate(request.get_json(silent=True) or {})
        req_id = secrets.token_hex(4)
        _log("register", "challenge.start", req_id, user=payload.username)
        with db.session() as session:
            user, challenge, credentials = registration.issue_challenge(session, payload.username)
            options = RegistrationOptions(
                challenge=challenge,
                rp=RelyingPartyEntity(id=settings.rp_id, name=settings.rp_name),
                user=UserEntity(
                    id=b64url_encode(payload.username.encode("utf-8")),
                    name=payload.username,
                    displayName=payload.username,
                ),
                pubKeyCredParams=[PubKeyCredParam(alg=alg) for alg in settings.supported_algorithms],
                timeout=settings.ceremony_timeout_ms,
                excludeCredentials=[
                    PublicKeyCredentialDescriptor(id=cred.credential_id, transports=cred.transports)
                    for cred in credentials
                ],
            )
            user_id = user.id
        _log("register", "challenge.success", req_id, user=payload.username, user_id=user_id)
        return jsonify(options.model_dump())

    @app.post("/register-verify")
    def register_verify():
        payload = RegisterVerifyRequest.model_validate(request.get_json(silent=True) or {})
        req_id = secrets.token_hex(4)
        _log("register", "verify.start", req_id, user=payload.username)
        with db.session() as session:
            result = registration.verify(session, payload.username, payload.response)
            credential_id = result.credential.credential_id if result.credential else None
        if not result.verified:
            _log(
                "register",
                "verify.failed",
                req_id,
                level=logging.WARNING,
                user=payload.username,
                error=result.error,
            )
            return _ceremony_reply(result)
        _log("register", "verify.success", req_id, user=payload.username, credential_id=credential_id)
        return _ceremony_reply(result)

    @app.post("/login-challenge")
    def login_challenge():
        payload = LoginChallengeRequest.model_validate(request.get_json(silent=True) or {})
        req_id = secrets.token_hex(4)
        _log("login", "challenge.start", req_id, user=payload.username)
        with db.session() as session:
            _, challenge, credentials = authentication.issue_challenge(session, payload.username)
            options = AuthenticationOptions(
                challenge=challenge,
                rpId=settings.rp_id,
                allowCredentials=[
                    PublicKeyCredentialDescriptor(id=cred.credential_id, transports=cred.transports)
                    for cred in credentials
                ],
                timeout=settings.ceremony_timeout_ms,
            )
        _log(
            "login",
            "challenge.success",
            req_id,
            user=payload.username,
            credential_count=len(options.allowCredentials),
        )
        return jsonify(options.model_dump())

    @app.post("/login-verify")
    def login_verify():
        payload = LoginVerifyRequest.model_validate(request.get_json(silent=True) or {})
        req_id = secrets.token_hex(4)
        _log("login", "verify.start", req_id, user=payload.username)
        with db.session() as session:
            result = authentication.verify(session, payload.username, payload.response)
            counter = result.credential.counter if result.credential else None
        if not result.verified:
            _log(
                "login",
                "verify.failed",
                req_id,
                level=logging.ERROR if result.error == "possible_clone_detected" else logging.WARNING,
                user=payload.username,
                error=result.error,
            )
            return _ceremony_reply(result)
        token = session_issuer.issue(payload.username)
        _log("login", "verify.success", req_id, user=payload.username, counter=counter)
        return _ceremony_reply(result, token=token)

    @app.get("/profile")
    def profile():
        username = session_issuer.authenticate_header(request.headers.get("Authorization"))
        response = ProfileResponse(
            username=username,
            message=f"Welcome, {username}! This is a protected resource.",
        )
        return jsonify(response.model_dump())

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.errorhandler(PasskeyError)
    def handle_passkey_error(error: PasskeyError):
        if request.path == "/profile":
            _log("profile", "denied", secrets.token_hex(4), level=logging.WARNING, error=error.code)
        return _error(error.status, error.code, error.message)

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        fields = ", ".join(".".join(str(part) for part in item["loc"]) for item in error.errors())
        return _error(400, "invalid_request", f"Invalid request: {fields}")

    @app.errorhandler(Exception)
    def handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return _error(error.code or 500, "http_error", error.description or error.name)
        LOGGER.exception("Unhandled error while serving %s", request.path)
        return _error(500, "internal_error", "Internal server error")

    return app

from __future__ import annotations

from fido2.cose import ES256

from passkey_server.webauthn import b64url_decode
from softauthn import ORIGIN, RP_ID, generate_credential


def _register(client, soft_authenticator, username, **kwargs):
    options = client.post("/register-challenge", json={"username": username}).get_json()
    response = soft_authenticator.make_credential(options, **kwargs)
    return client.post("/register-verify", json={"username": username, "response": response})


def _login(client, soft_authenticator, username, **kwargs):
    options = client.post("/login-challenge", json={"username": username}).get_json()
    assertion = soft_authenticator.get_assertion(options, **kwargs)
    return client.post("/login-verify", json={"username": username, "response": assertion})


def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_register_challenge_options(client):
    reply = client.post("/register-challenge", json={"username": "alice"})

    assert reply.status_code == 200
    options = reply.get_json()
    assert options["rp"] == {"id": RP_ID, "name": "Test RP"}
    assert options["user"]["name"] == "alice"
    assert b64url_decode(options["user"]["id"]) == b"alice"
    assert options["attestation"] == "none"
    assert [param["alg"] for param in options["pubKeyCredParams"]] == [-7, -8, -257, -37]
    assert options["excludeCredentials"] == []
    assert len(options["challenge"]) >= 22


def test_register_challenge_requires_username(client):
    for body in ({}, {"username": ""}):
        reply = client.post("/register-challenge", json=body)
        assert reply.status_code == 400
        assert reply.get_json()["error"] == "invalid_request"


def test_full_passkey_flow(client, soft_authenticator):
    reply = _register(client, soft_authenticator, "alice")
    assert reply.status_code == 200
    assert reply.get_json() == {"verified": True}

    reply = _login(client, soft_authenticator, "alice")
    assert reply.status_code == 200
    body = reply.get_json()
    assert body["verified"] is True

    profile = client.get("/profile", headers={"Authorization": f"Bearer {body['token']}"})
    assert profile.status_code == 200
    assert profile.get_json()["username"] == "alice"
    assert "alice" in profile.get_json()["message"]


def test_username_taken_after_registration(client, soft_authenticator):
    assert _register(client, soft_authenticator, "alice").status_code == 200

    reply = client.post("/register-challenge", json={"username": "alice"})

    assert reply.status_code == 409
    assert reply.get_json()["error"] == "conflict"


def test_register_verify_unknown_user(client, soft_authenticator):
    options = client.post("/register-challenge", json={"username": "alice"}).get_json()
    response = soft_authenticator.make_credential(options)

    reply = client.post("/register-verify", json={"username": "mallory", "response": response})

    assert reply.status_code == 404
    assert reply.get_json()["verified"] is False


def test_duplicate_credential_is_conflict(client, soft_authenticator):
    credential = generate_credential(ES256.ALGORITHM)
    assert _register(client, soft_authenticator, "alice", credential=credential).status_code == 200

    reply = _register(client, soft_authenticator, "bob", credential=credential)

    assert reply.status_code == 409
    assert reply.get_json()["error"] == "conflict"
    assert client.post("/login-challenge", json={"username": "bob"}).status_code == 404


def test_register_verify_wrong_origin(client, soft_authenticator):
    reply = _register(client, soft_authenticator, "alice", origin=ORIGIN.replace("https", "http"))
    assert reply.status_code == 400
    assert reply.get_json()["error"] == "origin_mismatch"


def test_login_challenge_failures(client):
    reply = client.post("/login-challenge", json={"username": "ghost"})
    assert reply.status_code == 404
    assert reply.get_json()["error"] == "not_found"

    client.post("/register-challenge", json={"username": "carol"})
    reply = client.post("/login-challenge", json={"username": "carol"})
    assert reply.status_code == 404
    assert reply.get_json()["error"] == "no_credentials"


def test_login_challenge_lists_credentials(client, soft_authenticator):
    _register(client, soft_authenticator, "alice", transports=["usb"])

    options = client.post("/login-challenge", json={"username": "alice"}).get_json()

    assert options["rpId"] == RP_ID
    assert options["userVerification"] == "preferred"
    [descriptor] = options["allowCredentials"]
    assert descriptor["type"] == "public-key"
    assert descriptor["transports"] == ["usb"]
    assert descriptor["id"] in soft_authenticator.credentials


def test_counter_regression_is_forbidden(client, soft_authenticator):
    _register(client, soft_authenticator, "alice")
    assert _login(client, soft_authenticator, "alice").status_code == 200

    reply = _login(client, soft_authenticator, "alice", sign_count=1)

    assert reply.status_code == 403
    body = reply.get_json()
    assert body == {
        "verified": False,
        "error": "possible_clone_detected",
        "message": body["message"],
    }
    assert "token" not in body


def test_login_with_foreign_credential(client, soft_authenticator):
    _register(client, soft_authenticator, "alice")
    _register(client, soft_authenticator, "bob")
    bob_id = list(soft_authenticator.credentials)[-1]

    reply = _login(client, soft_authenticator, "alice", credential_id=bob_id)

    assert reply.status_code == 400
    assert reply.get_json()["error"] == "unrecognized_credential"


def test_profile_requires_token(client):
    reply = client.get("/profile")
    assert reply.status_code == 401
    assert reply.get_json()["error"] == "unauthorized"


def test_profile_rejects_invalid_token(client):
    reply = client.get("/profile", headers={"Authorization": "Bearer not-a-jwt"})
    assert reply.status_code == 403
    assert reply.get_json()["error"] == "token_invalid"


def test_cors_allows_configured_origin(client):
    reply = client.get("/health", headers={"Origin": ORIGIN})
    assert reply.headers.get("Access-Control-Allow-Origin") == ORIGIN

"""Pydantic schemas for request/response payloads."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class UsernameRequest(BaseModel):
    username: str = Field(min_length=1, max_length=128)


class RegisterChallengeRequest(UsernameRequest):
    pass


class LoginChallengeRequest(UsernameRequest):
    pass


class RegisterVerifyRequest(UsernameRequest):
    response: dict


class LoginVerifyRequest(UsernameRequest):
    response: dict


class RelyingPartyEntity(BaseModel):
    id: str
    name: str


class UserEntity(BaseModel):
    id: str = Field(min_length=1)
    name: str
    displayName: str


class PubKeyCredParam(BaseModel):
    type: Literal["public-key"] = "public-key"
    alg: int


class PublicKeyCredentialDescriptor(BaseModel):
    id: str
    type: Literal["public-key"] = "public-key"
    transports: List[str] = Field(default_factory=list)


class AuthenticatorSelectionCriteria(BaseModel):
    residentKey: Literal["required", "preferred", "discouraged"] = "preferred"
    requireResidentKey: bool = False
    userVerification: Literal["required", "preferred", "discouraged"] = "preferred"


class RegistrationOptions(BaseModel):
    challenge: str
    rp: RelyingPartyEntity
    user: UserEntity
    pubKeyCredParams: List[PubKeyCredParam]
    timeout: int
    attestation: Literal["none"] = "none"
    authenticatorSelection: AuthenticatorSelectionCriteria = Field(
        default_factory=AuthenticatorSelectionCriteria
    )
    excludeCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)


class AuthenticationOptions(BaseModel):
    challenge: str
    rpId: str
    allowCredentials: List[PublicKeyCredentialDescriptor]
    timeout: int
    userVerification: Literal["preferred"] = "preferred"


class VerificationResponse(BaseModel):
    verified: bool
    token: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None


class RPResponse(BaseModel):
    success: bool = True
    error: Optional[str] = None
    message: Optional[str] = None


class ProfileResponse(BaseModel):
    username: str
    message: str

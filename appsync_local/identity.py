"""
Caller identity extraction.

Derives `ctx.identity` from inbound request headers and the configured auth
methods. Methods are tried in declaration order and the first one that
yields an identity wins. A method whose input is missing or malformed
yields nothing and evaluation moves on to the next method.

JWTs are decoded without signature verification. Signature, expiry and
audience checks belong to the identity provider in front of the API.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import jwt

from .config import AuthConfig
from .context import Identity

logger = logging.getLogger(__name__)

SIGV4_PREFIX = "AWS4-HMAC-SHA256"


def normalize_headers(headers: Mapping[str, Any] | None) -> dict[str, str]:
    """Lower-case header names; list values keep their first entry."""
    normalized: dict[str, str] = {}
    for key, value in (headers or {}).items():
        if isinstance(value, (list, tuple)):
            value = value[0] if value else ""
        normalized[key.lower()] = str(value)
    return normalized


def _bearer_token(headers: dict[str, str]) -> str | None:
    auth = headers.get("authorization")
    if not auth:
        return None
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return auth.strip()


def decode_jwt_claims(token: str) -> dict[str, Any] | None:
    """Decode a JWT payload without verifying it. None when malformed."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.debug(f"[identity] Could not decode JWT: {e}")
        return None
    return claims if isinstance(claims, dict) else None


# =============================================================================
# Per-method extractors
# =============================================================================


def _from_api_key(headers: dict[str, str], method: AuthConfig) -> Identity | None:
    if not headers.get("x-api-key"):
        return None
    return Identity(auth_type=method.type)


def _from_jwt(headers: dict[str, str], method: AuthConfig) -> Identity | None:
    token = _bearer_token(headers)
    if not token:
        return None
    claims = decode_jwt_claims(token)
    if claims is None:
        return None

    groups = claims.get("cognito:groups")
    username = (
        claims.get("cognito:username")
        or claims.get("username")
        or claims.get("preferred_username")
        or claims.get("sub")
    )
    return Identity(
        sub=claims.get("sub"),
        issuer=claims.get("iss"),
        username=username,
        claims=claims,
        groups=list(groups) if isinstance(groups, list) else None,
        default_auth_strategy="ALLOW",
        auth_type=method.type,
    )


def _from_lambda_mock(headers: dict[str, str], method: AuthConfig) -> Identity | None:
    # authorizer callables are never executed here; only declared mocks count
    if method.identity is None and method.resolver_context is None:
        return None

    mock = dict(method.identity or {})
    claims = {**mock, **(method.resolver_context or {})}
    groups = mock.get("groups")
    return Identity(
        sub=mock.get("sub"),
        issuer=mock.get("issuer"),
        username=mock.get("username"),
        claims=claims,
        groups=list(groups) if isinstance(groups, list) else None,
        resolver_context=dict(method.resolver_context) if method.resolver_context else None,
        auth_type=method.type,
    )


def _from_iam(headers: dict[str, str], method: AuthConfig) -> Identity | None:
    auth = headers.get("authorization", "")
    if not auth.startswith(SIGV4_PREFIX):
        return None
    return Identity(auth_type=method.type)


_EXTRACTORS = {
    "API_KEY": _from_api_key,
    "AMAZON_COGNITO_USER_POOLS": _from_jwt,
    "OPENID_CONNECT": _from_jwt,
    "AWS_LAMBDA": _from_lambda_mock,
    "AWS_IAM": _from_iam,
}


def extract_identity(
    headers: Mapping[str, Any] | None,
    auth_methods: Iterable[AuthConfig],
) -> Identity | None:
    """
    Derive the caller identity for one request.

    Args:
        headers: Inbound request headers (any case)
        auth_methods: Configured auth methods, in declaration order

    Returns:
        The first identity a method establishes, or None. None is not an
        error; the layer above decides whether anonymous access is allowed.
    """
    normalized = normalize_headers(headers)
    for method in auth_methods:
        extractor = _EXTRACTORS.get(method.type)
        if extractor is None:
            continue
        identity = extractor(normalized, method)
        if identity is not None:
            logger.debug(f"[identity] Identity established via {method.type}")
            return identity
    return None

"""
Tests for caller identity extraction.
"""

import jwt
import pytest

from appsync_local.config import AuthConfig
from appsync_local.identity import decode_jwt_claims, extract_identity, normalize_headers


def make_token(**claims) -> str:
    return jwt.encode(claims, "local-signing-secret-for-tests-only-0123456789", algorithm="HS256")


@pytest.fixture
def cognito():
    return AuthConfig(type="AMAZON_COGNITO_USER_POOLS", user_pool_id="pool")


@pytest.fixture
def api_key():
    return AuthConfig(type="API_KEY", key="local-key")


class TestHeaders:
    def test_normalize_lowercases(self):
        assert normalize_headers({"X-Api-Key": "k", "Host": ["a", "b"]}) == {
            "x-api-key": "k",
            "host": "a",
        }

    def test_decode_malformed(self):
        assert decode_jwt_claims("not-a-jwt") is None


class TestExtractIdentity:
    def test_no_methods_no_identity(self):
        assert extract_identity({"x-api-key": "k"}, []) is None

    def test_api_key_identity_has_no_claims(self, api_key):
        identity = extract_identity({"X-API-KEY": "local-key"}, [api_key])

        assert identity is not None
        assert identity.claims == {}
        assert identity.sub is None
        assert identity.auth_type == "API_KEY"

    def test_cognito_claims(self, cognito):
        token = make_token(
            sub="user-1",
            iss="https://issuer",
            **{"cognito:username": "alice", "cognito:groups": ["admin"], "custom:tier": "gold"},
        )
        identity = extract_identity({"Authorization": f"Bearer {token}"}, [cognito])

        assert identity.sub == "user-1"
        assert identity.issuer == "https://issuer"
        assert identity.username == "alice"
        assert identity.groups == ["admin"]
        assert identity.claims["custom:tier"] == "gold"

    def test_raw_token_without_bearer_prefix(self, cognito):
        identity = extract_identity({"authorization": make_token(sub="u")}, [cognito])
        assert identity.sub == "u"

    def test_malformed_jwt_falls_through_to_next_method(self, cognito, api_key):
        headers = {"authorization": "Bearer garbage", "x-api-key": "local-key"}
        identity = extract_identity(headers, [cognito, api_key])

        assert identity is not None
        assert identity.auth_type == "API_KEY"

    def test_declaration_order_wins(self, cognito, api_key):
        headers = {"authorization": make_token(sub="u"), "x-api-key": "k"}

        assert extract_identity(headers, [api_key, cognito]).auth_type == "API_KEY"
        assert extract_identity(headers, [cognito, api_key]).auth_type == "AMAZON_COGNITO_USER_POOLS"

    def test_lambda_mock_identity_merges_resolver_context(self):
        method = AuthConfig(
            type="AWS_LAMBDA",
            identity={"sub": "mock-user", "username": "mock", "groups": ["g1"]},
            resolver_context={"tenantId": "t-1"},
        )
        identity = extract_identity({}, [method])

        assert identity.sub == "mock-user"
        assert identity.username == "mock"
        assert identity.groups == ["g1"]
        assert identity.resolver_context == {"tenantId": "t-1"}
        assert identity.claims == {
            "sub": "mock-user",
            "username": "mock",
            "groups": ["g1"],
            "tenantId": "t-1",
        }

    def test_lambda_without_mock_yields_nothing(self):
        method = AuthConfig(type="AWS_LAMBDA", lambda_function="authorizer.py")
        assert extract_identity({"authorization": "token"}, [method]) is None

    def test_iam_requires_sigv4(self):
        method = AuthConfig(type="AWS_IAM")

        assert extract_identity({"authorization": "Bearer x"}, [method]) is None
        identity = extract_identity(
            {"authorization": "AWS4-HMAC-SHA256 Credential=AKID/20240101/us-east-1/appsync/aws4_request"},
            [method],
        )
        assert identity.auth_type == "AWS_IAM"
        assert identity.claims == {}

    def test_config_accepts_camel_case(self):
        method = AuthConfig.model_validate(
            {"type": "AWS_LAMBDA", "identity": {"sub": "x"}, "resolverContext": {"a": 1}}
        )
        assert method.resolver_context == {"a": 1}

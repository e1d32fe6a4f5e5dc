"""
Configuration Models for appsync-local.

Pydantic models for the already-validated API configuration (resolvers,
data sources, auth methods) plus the engine settings read from the
environment.

Structural validation and cross-reference checks (resolvers pointing at
existing data sources, schema files existing) happen upstream; these models
only give the engine typed access to the configuration.

File Format (JSON):
    {
        "schema": "schema.graphql",
        "apiConfig": {"auth": [{"type": "API_KEY", "key": "local"}]},
        "dataSources": [{"type": "NONE", "name": "LocalNone"}],
        "resolvers": [
            {"type": "Query", "field": "echo", "kind": "Unit",
             "dataSource": "LocalNone", "file": "resolvers/echo.py"}
        ]
    }
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class _ConfigModel(BaseModel):
    """Accepts both the camelCase config keys and snake_case field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


# =============================================================================
# Data Sources
# =============================================================================


class DynamoDBConfig(_ConfigModel):
    """
    DynamoDB data source settings.

    `endpoint` switches the client to a local/emulated backend. Explicit
    credentials override the ambient credential chain only when both the
    key id and the secret are present.
    """

    table_name: str
    region: str = "us-east-1"
    endpoint: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None


class LambdaConfig(_ConfigModel):
    function_name: str = ""
    file: str | None = None
    region: str | None = None
    endpoint: str | None = None


class HTTPConfig(_ConfigModel):
    endpoint: str
    default_headers: dict[str, str] = Field(default_factory=dict)


class RDSConfig(_ConfigModel):
    """
    RDS data source settings.

    Only mode "local" (direct connection through a driver) is executed;
    the AWS Data API fields are carried for configuration parity.
    """

    database_name: str
    engine: Literal["postgresql", "mysql"] = "postgresql"
    mode: Literal["local", "aws"] = "local"
    host: str = "localhost"
    port: int | None = None
    user: str | None = None
    password: str | None = None
    ssl: bool = False
    region: str | None = None
    db_cluster_identifier: str | None = None
    aws_secret_store_arn: str | None = None
    resource_arn: str | None = None


class NoneDataSource(_ConfigModel):
    type: Literal["NONE"] = "NONE"
    name: str


class DynamoDataSource(_ConfigModel):
    type: Literal["DYNAMODB"] = "DYNAMODB"
    name: str
    config: DynamoDBConfig


class LambdaDataSource(_ConfigModel):
    type: Literal["LAMBDA"] = "LAMBDA"
    name: str
    config: LambdaConfig = Field(default_factory=LambdaConfig)


class HTTPDataSource(_ConfigModel):
    type: Literal["HTTP"] = "HTTP"
    name: str
    config: HTTPConfig


class RDSDataSource(_ConfigModel):
    type: Literal["RDS"] = "RDS"
    name: str
    config: RDSConfig


DataSource = Annotated[
    Union[NoneDataSource, DynamoDataSource, LambdaDataSource, HTTPDataSource, RDSDataSource],
    Field(discriminator="type"),
]


# =============================================================================
# Resolvers
# =============================================================================


class PipelineFunctionConfig(_ConfigModel):
    file: str
    data_source: str


class UnitResolverConfig(_ConfigModel):
    kind: Literal["Unit"] = "Unit"
    type: str = Field(..., description="Parent type name (Query, Mutation, Task, ...)")
    field: str
    data_source: str
    file: str

    @property
    def field_path(self) -> str:
        return f"{self.type}.{self.field}"


class PipelineResolverConfig(_ConfigModel):
    kind: Literal["Pipeline"] = "Pipeline"
    type: str = Field(..., description="Parent type name (Query, Mutation, Task, ...)")
    field: str
    file: str
    functions: list[PipelineFunctionConfig] = Field(
        default_factory=list,
        alias="pipelineFunctions",
    )

    @property
    def field_path(self) -> str:
        return f"{self.type}.{self.field}"


ResolverConfig = Annotated[
    Union[UnitResolverConfig, PipelineResolverConfig],
    Field(discriminator="kind"),
]


# =============================================================================
# Auth
# =============================================================================


AuthType = Literal[
    "API_KEY",
    "AMAZON_COGNITO_USER_POOLS",
    "OPENID_CONNECT",
    "AWS_LAMBDA",
    "AWS_IAM",
]


class AuthConfig(_ConfigModel):
    """
    One configured auth method.

    For AWS_LAMBDA, `identity` / `resolver_context` declare a mock identity
    used in local mode instead of invoking an authorizer.
    """

    type: AuthType
    key: str | None = None
    description: str | None = None
    expiration: int | None = None
    lambda_function: str | None = None
    identity: dict[str, Any] | None = None
    resolver_context: dict[str, Any] | None = None
    issuer: str | None = None
    user_pool_id: str | None = None
    client_id: str | None = None


class ApiConfig(_ConfigModel):
    auth: list[AuthConfig] = Field(default_factory=list)


# =============================================================================
# Top-level config
# =============================================================================


class AppSyncConfig(_ConfigModel):
    """Complete, already-validated API configuration."""

    schema_path: str = Field("", alias="schema")
    api_config: ApiConfig = Field(default_factory=ApiConfig)
    resolvers: list[ResolverConfig] = Field(default_factory=list)
    data_sources: list[DataSource] = Field(default_factory=list)
    port: int = 4000

    @property
    def auth(self) -> list[AuthConfig]:
        return self.api_config.auth

    def resolve_paths(self, base_dir: str | Path) -> AppSyncConfig:
        """
        Return a copy with every resolver, function and Lambda file made
        absolute against `base_dir`.
        """
        base = Path(base_dir)

        def _abs(file: str) -> str:
            path = Path(file)
            return str(path if path.is_absolute() else (base / path).resolve())

        resolvers: list[Any] = []
        for resolver in self.resolvers:
            update: dict[str, Any] = {"file": _abs(resolver.file)}
            if isinstance(resolver, PipelineResolverConfig):
                update["functions"] = [
                    fn.model_copy(update={"file": _abs(fn.file)}) for fn in resolver.functions
                ]
            resolvers.append(resolver.model_copy(update=update))

        data_sources: list[Any] = []
        for ds in self.data_sources:
            if isinstance(ds, LambdaDataSource) and ds.config.file:
                ds = ds.model_copy(
                    update={"config": ds.config.model_copy(update={"file": _abs(ds.config.file)})}
                )
            data_sources.append(ds)

        return self.model_copy(update={"resolvers": resolvers, "data_sources": data_sources})


def load_config(path: str | Path) -> AppSyncConfig:
    """
    Load an API configuration from a JSON file.

    Relative resolver/function/Lambda paths are resolved against the
    directory holding the config file.

    Args:
        path: Path to the JSON config file

    Returns:
        AppSyncConfig with absolute file paths
    """
    config_path = Path(path)
    data = json.loads(config_path.read_text(encoding="utf-8"))
    config = AppSyncConfig.model_validate(data)

    logger.info(
        f"[config] Loaded {config_path.name}: "
        f"{len(config.resolvers)} resolvers, {len(config.data_sources)} data sources, "
        f"{len(config.auth)} auth methods"
    )
    return config.resolve_paths(config_path.resolve().parent)


# =============================================================================
# Engine settings
# =============================================================================


class EngineSettings(BaseSettings):
    """
    Engine settings read from APPSYNC_LOCAL_* environment variables.

    The defaults mirror the managed service's fixed limits.
    """

    request_timeout_seconds: float = 30.0
    max_response_bytes: int = 5_242_880
    http_timeout_seconds: float = 30.0
    rds_pool_size: int = 10
    rds_connect_timeout_seconds: float = 5.0
    ssl_reject_unauthorized: bool = True

    model_config = SettingsConfigDict(env_prefix="APPSYNC_LOCAL_", extra="ignore")

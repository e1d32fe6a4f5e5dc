"""
Tests for configuration models and engine settings.
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from appsync_local.config import (
    AppSyncConfig,
    DynamoDataSource,
    EngineSettings,
    LambdaDataSource,
    PipelineResolverConfig,
    RDSDataSource,
    UnitResolverConfig,
    load_config,
)

CONFIG = {
    "schema": "schema.graphql",
    "apiConfig": {"auth": [{"type": "API_KEY", "key": "local"}]},
    "dataSources": [
        {"type": "NONE", "name": "LocalNone"},
        {"type": "DYNAMODB", "name": "Users",
         "config": {"tableName": "users", "endpoint": "http://localhost:8000"}},
        {"type": "LAMBDA", "name": "Fn", "config": {"functionName": "fn", "file": "lambdas/fn.py"}},
        {"type": "RDS", "name": "MainDB",
         "config": {"databaseName": "app", "engine": "mysql", "port": 3307}},
    ],
    "resolvers": [
        {"type": "Query", "field": "getUser", "kind": "Unit",
         "dataSource": "Users", "file": "resolvers/getUser.py"},
        {"type": "Mutation", "field": "createUser", "kind": "Pipeline",
         "file": "resolvers/createUser.py",
         "pipelineFunctions": [{"file": "functions/validate.py", "dataSource": "LocalNone"}]},
    ],
}


class TestAppSyncConfig:
    def test_camel_case_keys(self):
        config = AppSyncConfig.model_validate(CONFIG)

        assert config.schema_path == "schema.graphql"
        assert config.auth[0].key == "local"
        users = config.data_sources[1]
        assert isinstance(users, DynamoDataSource)
        assert users.config.table_name == "users"
        assert users.config.region == "us-east-1"
        rds = config.data_sources[3]
        assert isinstance(rds, RDSDataSource)
        assert rds.config.engine == "mysql"
        assert rds.config.mode == "local"

    def test_resolver_discriminator(self):
        config = AppSyncConfig.model_validate(CONFIG)

        unit, pipeline = config.resolvers
        assert isinstance(unit, UnitResolverConfig)
        assert unit.field_path == "Query.getUser"
        assert isinstance(pipeline, PipelineResolverConfig)
        assert pipeline.functions[0].data_source == "LocalNone"

    def test_unknown_data_source_type(self):
        with pytest.raises(ValidationError):
            AppSyncConfig.model_validate({"dataSources": [{"type": "ELASTICSEARCH", "name": "x"}]})

    def test_models_are_frozen(self):
        config = AppSyncConfig.model_validate(CONFIG)
        with pytest.raises(ValidationError):
            config.port = 1  # type: ignore[misc]


class TestLoadConfig:
    def test_paths_resolved_against_config_dir(self, tmp_path):
        path = tmp_path / "appsync-config.json"
        path.write_text(json.dumps(CONFIG), encoding="utf-8")

        config = load_config(path)

        base = tmp_path.resolve()
        assert config.resolvers[0].file == str(base / "resolvers" / "getUser.py")
        assert config.resolvers[1].functions[0].file == str(base / "functions" / "validate.py")
        fn = config.data_sources[2]
        assert isinstance(fn, LambdaDataSource)
        assert fn.config.file == str(base / "lambdas" / "fn.py")

    def test_absolute_paths_kept(self, tmp_path):
        absolute = str(Path("/srv/resolvers/echo.py"))
        data = {
            "resolvers": [
                {"type": "Query", "field": "echo", "kind": "Unit", "dataSource": "LocalNone", "file": absolute}
            ]
        }
        path = tmp_path / "config.json"
        path.write_text(json.dumps(data), encoding="utf-8")

        assert load_config(path).resolvers[0].file == absolute


class TestEngineSettings:
    def test_defaults(self):
        settings = EngineSettings()
        assert settings.request_timeout_seconds == 30.0
        assert settings.max_response_bytes == 5_242_880
        assert settings.ssl_reject_unauthorized is True

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("APPSYNC_LOCAL_REQUEST_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("APPSYNC_LOCAL_SSL_REJECT_UNAUTHORIZED", "false")

        settings = EngineSettings()
        assert settings.request_timeout_seconds == 2.5
        assert settings.ssl_reject_unauthorized is False

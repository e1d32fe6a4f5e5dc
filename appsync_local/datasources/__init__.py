"""
Data source adapters.

Each configured data source type (NONE, DYNAMODB, LAMBDA, HTTP, RDS) has an
adapter; DataSourceDispatcher routes requests to them by data source name.
"""

from .cache import ResourceCache
from .dispatcher import DataSourceDispatcher
from .dynamo import DynamoDBAdapter, translate_dynamo_request
from .http import HTTPAdapter, http_request, is_success_response
from .aws_lambda import LambdaAdapter
from .rds import RDSAdapter, convert_variables, rds_request

__all__ = [
    "DataSourceDispatcher",
    "DynamoDBAdapter",
    "HTTPAdapter",
    "LambdaAdapter",
    "RDSAdapter",
    "ResourceCache",
    "convert_variables",
    "http_request",
    "is_success_response",
    "rds_request",
    "translate_dynamo_request",
]

from databricks.aiosql.exc import *

__version__ = "0.1.0"

from databricks.aiosql.backend.types import (
    ColumnDesc,
    OperationState,
    TableSchema,
    TypeId,
)
from databricks.aiosql.client import Client
from databricks.aiosql.config import ClientConfig
from databricks.aiosql.operation.operation import Operation
from databricks.aiosql.session import Session


async def connect(server_hostname, http_path, access_token=None, config=None, **kwargs):
    """Create a Client and connect it; close it with `await client.close()`"""
    client = Client(config)
    return await client.connect(server_hostname, http_path, access_token, **kwargs)

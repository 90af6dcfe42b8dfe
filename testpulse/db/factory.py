from typing import Optional

from fastapi import Request

from testpulse.core.config import settings, logger
from testpulse.core.errors import ConfigurationError
from testpulse.db.base import StorageGateway
from testpulse.db.cloudsql import CloudSQLGateway
from testpulse.db.postgres import PostgresGateway
from testpulse.db.sqlite import SQLiteGateway

BACKENDS = ("sqlite", "postgres")


def new_db(backend: str, path: str = "", host: str = "", config=None) -> StorageGateway:
    """Construct the gateway for a backend name; unknown names are an error."""
    config = config or settings
    if backend == "sqlite":
        if not path:
            raise ConfigurationError("missing DB_PATH")
        return SQLiteGateway(path)
    if backend == "postgres":
        if not host:
            raise ConfigurationError("missing DB_HOST")
        return PostgresGateway(host, config=config)
    raise ConfigurationError(f"unknown backend: {backend!r}, expected one of {', '.join(BACKENDS)}")


def from_env(backend: Optional[str] = None, path: Optional[str] = None, host: Optional[str] = None,
             use_cloudsql: Optional[bool] = None, use_iam_auth: Optional[bool] = None,
             config=None) -> StorageGateway:
    """Resolve a gateway from explicit parameters, falling back to settings.

    The settings read DB_BACKEND, DB_PATH, DB_HOST, USE_CLOUDSQL and
    USE_IAM_AUTH from the environment or a .env file.
    """
    config = config or settings
    backend = backend or config.DB_BACKEND
    if not backend:
        raise ConfigurationError("missing DB_BACKEND")
    path = path or config.DB_PATH
    host = host or config.DB_HOST
    use_cloudsql = config.USE_CLOUDSQL if use_cloudsql is None else use_cloudsql
    use_iam_auth = config.USE_IAM_AUTH if use_iam_auth is None else use_iam_auth

    if use_cloudsql:
        if backend != "postgres":
            raise ConfigurationError(f"managed mode requires the postgres backend, got {backend!r}")
        if not host:
            raise ConfigurationError("missing DB_HOST")
        gateway = CloudSQLGateway(host, use_iam_auth=use_iam_auth, config=config)
    else:
        gateway = new_db(backend, path=path, host=host, config=config)

    logger.info(f"Using {gateway.name} storage backend")
    return gateway


def get_gateway(request: Request) -> StorageGateway:
    """FastAPI dependency returning the gateway opened at startup."""
    return request.app.state.gateway

from typing import Callable, Optional

from sqlalchemy import event

from testpulse.core.config import settings, logger
from testpulse.core.errors import ConfigurationError
from testpulse.db.postgres import PostgresGateway, create_pooled_engine


class CloudSQLGateway(PostgresGateway):
    """Postgres hosted on a managed instance.

    Connections always require TLS. With IAM auth the password is replaced by
    a short-lived access token, fetched again for every new pooled connection.
    Queries are the same as for PostgresGateway.
    """

    name = "cloudsql"

    def __init__(self, host: str = "", use_iam_auth: bool = False,
                 token_provider: Optional[Callable[[], str]] = None, config=None):
        config = config or settings
        config = config.model_copy(update={"DB_HOST": host or config.DB_HOST})
        connect_args = {"sslmode": "require"}

        if not use_iam_auth:
            engine = create_pooled_engine(config.DB_CONNECTION_STRING(), connect_args=connect_args)
        else:
            if token_provider is None:
                if not config.DB_ACCESS_TOKEN:
                    raise ConfigurationError("missing DB_ACCESS_TOKEN for IAM authentication")
                token_provider = lambda: config.DB_ACCESS_TOKEN
            engine = create_pooled_engine(config.DB_CONNECTION_STRING(password=""), connect_args=connect_args)

            @event.listens_for(engine, "do_connect")
            def provide_token(dialect, conn_rec, cargs, cparams):
                cparams["password"] = token_provider()

        self.use_iam_auth = use_iam_auth
        logger.info(f"Connecting to managed postgres at {config.DB_HOST} (iam auth: {use_iam_auth})")
        super().__init__(engine=engine)

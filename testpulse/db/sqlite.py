import os

from sqlalchemy import create_engine
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from testpulse.core.config import logger
from testpulse.db.base import SQLGateway


class SQLiteGateway(SQLGateway):
    """Embedded file-backed store.

    Only stores runs; the flake charts are served by the Postgres backend.
    """

    name = "sqlite"
    supports_analytics = False
    insert = staticmethod(sqlite_insert)

    def __init__(self, path: str = "", engine=None):
        if engine is None:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            logger.info(f"Opening sqlite database at {path}")
            engine = create_engine(f"sqlite:///{path}")
        self.path = path
        super().__init__(engine)

from typing import List
from dotenv import load_dotenv
from pydantic_settings import BaseSettings
from sqlalchemy.engine import URL
from functools import lru_cache
import logging

# Load from .env file first
load_dotenv()


class Settings(BaseSettings):
    ENVIRONMENT: str = "dev"
    LOG_LEVEL: str = "INFO"
    VERSION: str = "v0.1.0"
    BUILD: str = "local"

    DB_BACKEND: str = ""  # sqlite or postgres
    DB_PATH: str = ""  # sqlite file path
    DB_HOST: str = ""  # postgres host, or instance address in cloudsql mode
    DB_PORT: str = "5432"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_NAME: str = "testpulse"
    USE_CLOUDSQL: bool = False
    USE_IAM_AUTH: bool = False
    DB_ACCESS_TOKEN: str = ""  # short-lived token used with IAM auth

    @property
    def BUILD_VERSION(self) -> str:
        return f"{self.VERSION}_{self.BUILD}"

    def DB_CONNECTION_STRING(self, password: str = None) -> str:
        if password is None:
            password = self.DB_PASSWORD
        url = URL.create(
            "postgresql+psycopg2",
            username=self.DB_USER,
            password=password or None,
            host=self.DB_HOST,
            port=int(self.DB_PORT),
            database=self.DB_NAME,
        )
        return url.render_as_string(hide_password=False)

    @property
    def CORS_ORIGINS(self) -> List[str]:
        # dashboards are served from arbitrary hosts
        return ["*"]


@lru_cache()
def get_settings():
    return Settings()


@lru_cache()
def get_logger():
    level = get_settings().LOG_LEVEL.upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO))
    return logging.getLogger("testpulse")


settings = get_settings()
logger = get_logger()

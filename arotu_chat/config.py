from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    mongodb_uri: str = 'mongodb://localhost:27017'
    mongodb_db: str = 'chatchat'

    # tokens are issued by the auth service; we only verify them
    jwt_secret: str = 'change-me'
    jwt_algorithm: str = 'HS256'

    cors_origins: List[str] = [
        'http://localhost:5173',
        'http://127.0.0.1:5173',
        'http://localhost:3000',
    ]
    # a stalled socket is skipped after this many seconds
    ws_send_timeout: float = 5.0

    log_level: str = 'INFO'


@lru_cache
def get_settings() -> Settings:
    return Settings()

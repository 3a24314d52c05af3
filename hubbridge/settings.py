from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    HA_URL: str = "http://homeassistant.local:8123"
    HA_TOKEN: Optional[str] = None
    HA_AUTO_DISCOVERY: bool = True
    AUTO_CONNECT: bool = True
    DB_URL: str = "sqlite:///./data/bridge.db"
    LOG_LEVEL: str = "INFO"

    HTTP_TIMEOUT: float = 15
    # bounds socket open + auth handshake
    AUTH_TIMEOUT: float = 10
    REQUEST_TIMEOUT: float = 10

    RECONNECT_BASE: float = 1
    RECONNECT_CAP: float = 30
    RECONNECT_MAX_ATTEMPTS: int = 5

settings = Settings()

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    databaseUrl: str
    databaseEcho: bool = False
    poolPrePing: bool = True
    logLevel: str = "INFO"
    namespacePrefix: str = "ns"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

@lru_cache(maxsize=1)
def getSettings() -> Settings:
    return Settings()

import os
from datetime import timedelta

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # MAPI endpoint and credentials
    url: str = Field(default="http://localhost", alias="MAPI_URL")
    username: str = Field(default="", alias="MAPI_USERNAME")
    password: str = Field(default="", alias="MAPI_PASSWORD")

    # Transport
    timeout: float = Field(default=30.0, alias="MAPI_TIMEOUT")
    retries: int = Field(default=0, alias="MAPI_RETRIES")

    # Response cache
    cache_enabled: bool = Field(default=True, alias="MAPI_CACHE")
    cache_ttl_seconds: float = Field(default=300, alias="MAPI_CACHE_TTL")

    debug: bool = Field(default=False, alias="MAPI_DEBUG")

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(seconds=self.cache_ttl_seconds)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from MAPI_* environment variables."""
        return cls.model_validate(
            {k: v for k, v in os.environ.items() if k.startswith("MAPI_")}
        )


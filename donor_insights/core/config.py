from functools import lru_cache
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # APP
    APP_NAME: str = "Donor Insights API"
    ENV: str = "development"
    DEBUG: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "structured"  # structured | json
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: Optional[str] = None

    # Banco de Dados (somente o SqlOrderStore precisa)
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Fuso usado para ancorar "hoje"
    TIMEZONE: str = "UTC"

    # CORS (aceita string separada por vírgulas no .env)
    CORS_ORIGINS: Optional[str] = None

    # CACHE de resultados
    CACHE_ENABLED: bool = True
    CACHE_TTL_SECONDS: int = 3600
    CACHE_SCHEMA_VERSION: str = "v3"
    CUSTOMER_CACHE_TTL_SECONDS: int = 300

    # CACHE HTTP
    CACHE_MAX_AGE: int = 60
    CACHE_SWR: int = 300

    # Intervalos de datas
    LARGE_RANGE_DAYS: int = 180
    MAX_CUSTOM_RANGE_DAYS: int = 730
    CHUNK_DAYS: int = 30

    # Orçamento de memória (0 = usa o limite do processo)
    MEMORY_LIMIT_BYTES: int = 0
    MEMORY_THRESHOLD: float = 0.8

    # Capacidades e limites do Order Store
    SUBSCRIPTIONS_ENABLED: bool = True
    DEFAULT_CATEGORY_ID: Optional[int] = None
    FREQUENCY_MEDIAN_SAMPLE: int = 100
    CUSTOMER_TOP_LIMIT: int = 100
    ORDER_SCAN_LIMIT: int = 5000

    @field_validator("CHUNK_DAYS", "LARGE_RANGE_DAYS", "MAX_CUSTOM_RANGE_DAYS", "CUSTOMER_TOP_LIMIT")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("valor deve ser positivo.")
        return v

    @field_validator("MEMORY_THRESHOLD")
    @classmethod
    def _threshold_fraction(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("MEMORY_THRESHOLD deve estar entre 0 e 1.")
        return v

    @field_validator("TIMEZONE")
    @classmethod
    def _known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Fuso horário desconhecido: {v}") from exc
        return v

    @property
    def CORS_ORIGINS_LIST(self) -> List[str]:
        v = self.CORS_ORIGINS
        if not v:
            return []
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)

    # Pydantic v2 settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # ignora chaves extras no .env
    )

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

settings = get_settings()

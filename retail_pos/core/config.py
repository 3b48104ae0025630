from decimal import Decimal
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'pos_user'
    POSTGRES_PASSWORD: str = 'pos_pass'
    POSTGRES_DB: str = 'pos_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Sobrescribe la URL construida (ej. sqlite para desarrollo local)

    # JWT settings (tokens emitidos por el proveedor de identidad)
    APP_SECRET_STRING: str = 'your-super-secret-key-here-change-in-production-2024'
    ALGORITHM: str = 'HS256'

    # Cuentas y entidades distinguidas del catálogo (se identifican por descripción)
    CASH_ACCOUNT_DESCRIPTION: str = 'EFECTIVO'
    CURRENT_ACCOUNT_DESCRIPTION: str = 'CUENTA CORRIENTE'
    WALK_IN_CLIENT_NAME: str = 'CONSUMIDOR FINAL'
    CREDIT_NOTE_DOCUMENT_DESCRIPTION: str = 'NOTA DE CREDITO'

    # Reglas del motor de ventas
    ALLOW_NEGATIVE_STOCK: bool = False
    TILL_LOCK_SCOPE: Literal["cashier", "global"] = "cashier"
    FLAT_TAX_RATE: Decimal = Decimal("0")  # Ej: 0.21 = 21%

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", "ALLOW_NEGATIVE_STOCK", mode="before")
    @classmethod
    def parse_bool(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("FLAT_TAX_RATE")
    @classmethod
    def validate_tax_rate(cls, v: Decimal) -> Decimal:
        if v < 0 or v >= 1:
            raise ValueError("FLAT_TAX_RATE debe estar entre 0 y 1")
        return v


settings = Settings()

from decimal import Decimal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://localhost:5432/goal_escrow"
    database_pool_size: int = 5
    database_echo: bool = False
    escrow_backend: str = "sql"  # "sql" | "memory"
    escrow_api_key: str | None = None
    log_level: str = "INFO"

    # External generative service (milestone proposals + proof assessment).
    # Leaving the key unset disables it: planning falls back to templates and
    # proof assessment degrades to "pending".
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash-preview-05-20"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout_seconds: float = 30.0

    # Wallet / goal limits
    starting_wallet_balance: Decimal = Decimal("100.00")
    min_deposit: Decimal = Decimal("1")
    max_deposit: Decimal = Decimal("10000")
    min_title_length: int = 5
    max_title_length: int = 500

    # Optimistic concurrency: attempts after the first conflicting write
    settle_max_retries: int = 3

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()

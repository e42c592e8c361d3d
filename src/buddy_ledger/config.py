"""Configuration management for Buddy Ledger."""

from decimal import Decimal
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BUDDY_LEDGER_",
        case_sensitive=False,
        extra="ignore",
    )

    # Display
    currency_symbol: str = "$"

    # Expense limits
    max_expense_amount: Decimal = Decimal("1000000.00")

    # Transaction settings
    commit_retry_limit: int = 3  # Attempts before a ConflictError is surfaced
    delete_batch_size: int = 500  # Expenses removed per cascade transaction

    # Database path
    database_path: Path = Path.home() / ".buddy_ledger" / "buddy_ledger.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check the BUDDY_LEDGER_* variables in "
            f"your environment or .env file.\n"
            f"Error: {e}"
        ) from e

"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Invalid limits are rejected when settings are loaded.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Decoding recurses once per nesting level
MAX_NESTING_DEPTH_CEILING = 256


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Validator settings loaded from environment variables."""

    # Trust anchor override - DER or PEM root certificate (empty: bundled Apple root)
    root_certificate_path: str = ""

    # Decoding limits
    max_receipt_size: int = 4 * 1024 * 1024  # 4 MiB
    max_nesting_depth: int = 32

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console
    service_name: str = "iap-receipt-validator"
    version: str = "0.1.0"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate limits and logging options at startup.

        A zero or negative limit would reject every receipt (or accept
        unbounded input), so it is refused outright.
        """
        errors: list[str] = []

        if self.max_receipt_size <= 0:
            errors.append(f"MAX_RECEIPT_SIZE must be positive, got {self.max_receipt_size}")
        if not 0 < self.max_nesting_depth <= MAX_NESTING_DEPTH_CEILING:
            errors.append(
                f"MAX_NESTING_DEPTH must be between 1 and {MAX_NESTING_DEPTH_CEILING}, "
                f"got {self.max_nesting_depth}"
            )
        if self.log_format not in ("json", "console"):
            errors.append(f"LOG_FORMAT must be 'json' or 'console', got {self.log_format!r}")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings

"""
Runtime configuration for Strata.

A StrataConfig is built once at process start (usually from the project's
config/settings.py) and handed to every component. Nothing inside the core
reads environment variables.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class StrataConfig:
    """Immutable configuration value shared by all stages."""

    max_commit_retries: int = 3
    retry_base_delay_seconds: float = 0.05
    retry_max_delay_seconds: float = 2.0
    hash_salt: str = ""
    redaction_token: str = "[REDACTED]"
    base_path: str = "/tmp/strata"
    state_table: str = "strata-replay-state"
    state_db_path: Optional[str] = None
    region: str = "us-east-1"
    spark_config: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not 3 <= self.max_commit_retries <= 5:
            raise ValueError(
                f"max_commit_retries must be between 3 and 5, got {self.max_commit_retries}"
            )
        if self.retry_base_delay_seconds < 0 or self.retry_max_delay_seconds < 0:
            raise ValueError("retry delays must be non-negative")
        if not self.redaction_token:
            raise ValueError("redaction_token must be a non-empty string")

    @classmethod
    def from_settings(cls, settings: Any) -> "StrataConfig":
        """
        Build a config from a settings module or mapping.

        Recognised keys are upper-case versions of the field names
        (e.g. MAX_COMMIT_RETRIES, HASH_SALT, STATE_TABLE); unknown keys are
        ignored.

        Args:
            settings: A module object (like config.settings) or a mapping

        Returns:
            StrataConfig: The configuration value
        """
        if isinstance(settings, Mapping):
            lookup = dict(settings)
        else:
            lookup = {name: getattr(settings, name) for name in dir(settings) if name.isupper()}

        values = {}
        for f in fields(cls):
            key = f.name.upper()
            if key in lookup:
                values[f.name] = lookup[key]

        return cls(**values)


__all__ = ["StrataConfig"]

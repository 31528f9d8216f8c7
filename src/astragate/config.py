"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments
  2. Environment variables  (ASTRAGATE__GENERATOR__TIMEOUT_SECONDS=20)
  3. astragate.yaml         (searched in cwd, then ~/.config/astragate/)
  4. Hardcoded defaults

The config file is optional; every field has a default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from astragate.models.allowance import Feature, FeatureAllowance
from astragate.models.rate_limit import RateLimitConfig
from astragate.models.requests import OperationClass, Tier
from astragate.periods import Period

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("astragate")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "content.db")


def _find_config_file() -> str | None:
    """Return the path of the first astragate.yaml found, or None."""
    candidates = [
        Path("astragate.yaml"),
        Path.home() / ".config" / "astragate" / "astragate.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ServerSettings(_Section):
    host: str = "0.0.0.0"
    port: int = 8080


class RateLimitSettings(_Section):
    sweep_interval_seconds: float = 300.0
    free_general: RateLimitConfig = RateLimitConfig(window_ms=60_000, max_requests=10)
    premium_general: RateLimitConfig = RateLimitConfig(window_ms=60_000, max_requests=60)
    free_generation: RateLimitConfig = RateLimitConfig(window_ms=60_000, max_requests=5)
    premium_generation: RateLimitConfig = RateLimitConfig(window_ms=60_000, max_requests=30)

    def config_for(self, tier: Tier, operation: OperationClass) -> RateLimitConfig:
        """Look up the budget for a tier/operation pair.

        An unknown pair is a programming error and raises ``KeyError``.
        """
        table = {
            (Tier.FREE, OperationClass.GENERAL): self.free_general,
            (Tier.PREMIUM, OperationClass.GENERAL): self.premium_general,
            (Tier.FREE, OperationClass.GENERATION): self.free_generation,
            (Tier.PREMIUM, OperationClass.GENERATION): self.premium_generation,
        }
        return table[(tier, operation)]


class AllowanceSettings(_Section):
    """Per-feature usage allowances enforced by the tier gate.

    ``limit=None`` means unlimited. Brief synastry counts distinct partners
    over the lifetime of the process; regenerations count per ISO week in
    the user's UTC offset.
    """

    free_synastry_brief: FeatureAllowance = FeatureAllowance(limit=3)
    premium_synastry_brief: FeatureAllowance = FeatureAllowance()
    free_regenerate: FeatureAllowance = FeatureAllowance(limit=3, period=Period.WEEK)
    premium_regenerate: FeatureAllowance = FeatureAllowance(limit=3, period=Period.WEEK)

    def allowance_for(self, tier: Tier, feature: Feature) -> FeatureAllowance:
        table = {
            (Tier.FREE, Feature.SYNASTRY_BRIEF): self.free_synastry_brief,
            (Tier.PREMIUM, Feature.SYNASTRY_BRIEF): self.premium_synastry_brief,
            (Tier.FREE, Feature.REGENERATE): self.free_regenerate,
            (Tier.PREMIUM, Feature.REGENERATE): self.premium_regenerate,
        }
        return table[(tier, feature)]


class GeneratorSettings(_Section):
    base_url: str = "https://api.openai.com/v1"
    api_key: SecretStr | None = None
    model: str = "gpt-4o"
    temperature: float = 0.85
    max_tokens: int = 2000
    timeout_seconds: float = 30.0


class StoreSettings(_Section):
    db_path: str = _DEFAULT_DB_PATH
    # Users remembered as already loaded from the store
    max_hydrated_users: int = Field(default=100_000, ge=1)


class LoggingSettings(_Section):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: ASTRAGATE__SERVER__PORT=9090
        env_prefix="ASTRAGATE__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    rate_limits: RateLimitSettings = RateLimitSettings()
    allowances: AllowanceSettings = AllowanceSettings()
    generator: GeneratorSettings = GeneratorSettings()
    store: StoreSettings = StoreSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )

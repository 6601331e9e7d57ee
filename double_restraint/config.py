from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
    PydanticBaseSettingsSource,
    JsonConfigSettingsSource,
)
from typing import Optional, Tuple, Type
import logging
from pathlib import Path


class Settings(BaseSettings):
    # Redis
    redis_url: Optional[str] = Field(default=None, validation_alias="REDIS_URL")

    # Restraint pools
    key_prefix: str = Field(default="double_restraint:", validation_alias="RESTRAINT_KEY_PREFIX")
    slot_timeout: float = Field(default=60.0, validation_alias="RESTRAINT_SLOT_TIMEOUT")

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=False, validation_alias="LOG_JSON")

    @field_validator("slot_timeout")
    @classmethod
    def validate_slot_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("RESTRAINT_SLOT_TIMEOUT muss > 0 sein")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL muss einer der folgenden Werte sein: {sorted(allowed)}")
        return v.upper()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            file_secret_settings,
            dotenv_settings,
        ]
        # Optionale JSON-Quelle nur hinzufügen, wenn vorhanden
        if Path("config.json").exists():
            sources.append(JsonConfigSettingsSource(settings_cls, json_file="config.json"))
        return tuple(sources)


# Instanz erstellen
try:
    settings = Settings()
except Exception as e:
    logger = logging.getLogger("double_restraint.config")
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO)
    logger.error(f"Fehler beim Laden der Einstellungen: {e}", exc_info=True)
    # Minimaler Fallback falls Pydantic wegen Validierung fehlschlägt
    settings = Settings.model_construct()

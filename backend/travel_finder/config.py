from pathlib import Path

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings

from travel_finder.models.schemas import TripConfig


class ConfigError(RuntimeError):
    """Il documento del viaggio manca, non è leggibile o non è valido."""


class Settings(BaseSettings):
    # Flight Provider
    flight_provider: str = "serpapi"
    serpapi_api_key: str = ""

    # Documento del viaggio (rules + attendees)
    trip_config_path: str = "conf.yml"

    # Pipeline
    max_workers: int | None = None          # None = un worker per partecipante
    max_concurrent_calls: int = 8
    call_timeout_seconds: float = 60.0
    request_timeout_seconds: float = 30.0
    max_range_days: int = 161

    # App
    log_level: str = "WARNING"

    class Config:
        env_file = ".env"
        extra = "ignore"


# Istanza globale usata in tutto il progetto
settings = Settings()


def load_trip_config(path: str | Path) -> TripConfig:
    """
    Legge e valida il documento YAML con rules e attendees.

    Raises:
        ConfigError se il file manca, non è YAML valido o non rispetta lo schema.
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path} is not valid YAML: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping with 'rules' and 'attendees'")

    try:
        return TripConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"{path} is invalid: {exc}") from exc

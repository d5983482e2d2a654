from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./runtracker.db"
    log_level: str = "INFO"

    # BLE addresses of the paired sensors; empty = not configured
    hrm_address: str = ""
    footpod_address: str = ""

    # Runner profile used by the power model
    profile_weight_kg: float = 70.0
    profile_height_cm: float = 175.0
    profile_age: int = 30
    profile_biological_sex: str = "male"
    profile_custom_economy: Optional[float] = None

    reading_buffer_size: int = 10
    metrics_tick_seconds: float = 1.0
    checkpoint_interval_seconds: float = 5.0
    gps_distance_filter_m: float = 5.0
    gps_jump_threshold_m: float = 50.0
    gps_max_consecutive_jumps: int = 5
    footpod_power_stale_seconds: float = 5.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings

# config/settings.py
from pydantic_settings import BaseSettings
from typing import List

class Settings(BaseSettings):
    # API
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Tile Overlay"

    # CORS
    ALLOWED_HOSTS: List[str] = ["*"]

    # Identity of the tool that owns the persisted document
    SCRIPT_NAME: str = "Blue Marble"
    SCRIPT_VERSION: str = "0.81.1"
    SCHEMA_VERSION: str = "1.0.0"
    ACCEPTED_WHOAMI: List[str] = ["BlueMarble", "BluePeanits", "BluePeanuts"]

    # Canvas grid
    TILE_SIZE: int = 1000
    DRAW_MULT: int = 3  # must be odd
    MAX_TILE_INDEX: int = 2047
    MAX_NAME_LENGTH: int = 100
    PIXEL_COUNT_FALLBACK_PER_TILE: int = 500

    # Author id encoding
    ENCODING_BASE: str = "!#$%&'()*+,-./0123456789:;<=>?@ABCDEFGHIJKLMNOPQRSTUVWXYZ[]^_`abcdefghijklmnopqrstuvwxyz{|}~"
    USER_ID: int = 0

    # Storage
    DATA_DIR: str = "data"
    PRIMARY_STORAGE_KEY: str = "bmTemplates"
    FALLBACK_STORAGE_FILE: str = "localStorage.json"
    FALLBACK_STORAGE_KEY: str = "BlueMarbleTemplates"

    # External fetches / endpoint budget
    REQUEST_TIMEOUT: int = 30
    ENDPOINT_TIMEOUT_SECONDS: int = 55

    # Env
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()

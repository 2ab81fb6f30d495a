import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    ws_base_url: str = os.getenv("WS_BASE_URL", "ws://localhost:8000")
    slot_backend: str = os.getenv("SLOT_BACKEND", "memory")
    slot_api_base_url: Optional[str] = os.getenv("SLOT_API_BASE_URL")
    slot_api_timeout: float = float(os.getenv("SLOT_API_TIMEOUT", "10"))
    default_slot_title: str = os.getenv("DEFAULT_SLOT_TITLE", "Appointment Slot")
    default_duration_minutes: int = int(os.getenv("DEFAULT_DURATION_MINUTES", "30"))
    default_gap_minutes: int = int(os.getenv("DEFAULT_GAP_MINUTES", "0"))
    default_day_start: str = os.getenv("DEFAULT_DAY_START", "09:00")
    default_day_end: str = os.getenv("DEFAULT_DAY_END", "17:00")
    allow_past_dates: bool = os.getenv("ALLOW_PAST_DATES", "false").lower() == "true"


settings = Settings()

import os
import logging
from dataclasses import dataclass


@dataclass
class Settings:
    database_url: str = os.getenv("LIBRARY_DB", "sqlite:///./campus_library.db")
    log_level: str = os.getenv("LIBRARY_LOG", "INFO")
    fine_rate_white: int = int(os.getenv("LIBRARY_FINE_RATE_WHITE", "500"))
    fine_rate_yellow: int = int(os.getenv("LIBRARY_FINE_RATE_YELLOW", "500"))
    fine_rate_red: int = int(os.getenv("LIBRARY_FINE_RATE_RED", "1000"))
    max_reservations: int = int(os.getenv("LIBRARY_MAX_RESERVATIONS", "3"))
    claim_hours: int = int(os.getenv("LIBRARY_CLAIM_HOURS", "48"))
    fine_block_threshold: int = int(os.getenv("LIBRARY_FINE_BLOCK", "2000"))
    notify_url: str = os.getenv("LIBRARY_NOTIFY_URL", "")
    notify_timeout: float = float(os.getenv("LIBRARY_NOTIFY_TIMEOUT", "5"))


settings = Settings()


def configure_logging(level: str = None):
    logging.basicConfig(level=level or settings.log_level,
                        format="%(asctime)s %(levelname)s %(name)s - %(message)s")

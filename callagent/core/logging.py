"""Logging configuration."""
import logging
import sys
from typing import Optional


def setup_logging(level: str = "INFO") -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Set third-party loggers to WARNING
    for name in ("httpx", "openai", "anthropic", "twilio"):
        logging.getLogger(name).setLevel(logging.WARNING)


def mask_phone(phone_number: Optional[str]) -> str:
    """Mask a phone number for log output."""
    if not phone_number:
        return "unknown"
    return phone_number[:5] + "***"

"""
Environment-specific logging configuration
"""
import os
from typing import Dict, Any, Optional

from flyerdeck.setup_logging_optimized import setup_logging


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration based on environment"""

    is_production = os.getenv("RENDER") is not None or os.getenv("ENV") == "production"
    is_debug = os.getenv("DEBUG", "false").lower() == "true"

    config = {
        "production": {
            # Production: keep per-event stream logs out of the console
            "default_level": "WARNING",
            "console_format": "%(levelname)s - %(message)s",
            "log_requests": False,
            "suppress_modules": [
                "flyerdeck.api.generate_stream",
                "flyerdeck.services.event_channel",
                "flyerdeck.services.gemini_image_service",
                "flyerdeck.services.google_maps_service",
                "httpx",
            ],
        },
        "development": {
            "default_level": "INFO",
            "console_format": "%(asctime)s - %(levelname)s - %(message)s",
            "log_requests": True,
            "suppress_modules": ["httpx"],
        },
        "debug": {
            "default_level": "DEBUG",
            "console_format": "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
            "log_requests": True,
            "suppress_modules": [],
        },
    }

    if is_debug:
        selected_config = dict(config["debug"])
    elif is_production:
        selected_config = dict(config["production"])
    else:
        selected_config = dict(config["development"])

    selected_config["environment"] = "debug" if is_debug else ("production" if is_production else "development")

    return selected_config


def apply_logging_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Apply logging configuration to Python's logging system"""
    if config is None:
        config = get_logging_config()

    setup_logging(
        config["default_level"],
        fmt=config["console_format"],
        quiet=config.get("suppress_modules", []),
    )
    return config

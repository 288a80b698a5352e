from __future__ import annotations

import logging
import logging.config

# draw and crediting outcomes form the audit trail; they stay at INFO whatever LOG_LEVEL says
AUDIT_LOGGERS = (
    "apps.jackpot.services.draw_engine",
    "apps.jackpot.core.crediting",
)


def setup_logging(level: str = "INFO") -> None:
    level = level.upper()
    audit_level = "DEBUG" if level == "DEBUG" else "INFO"
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                }
            },
            "loggers": {
                **{name: {"level": audit_level} for name in AUDIT_LOGGERS},
                "uvicorn.access": {"level": "WARNING"},
                "sqlalchemy.engine": {"level": "WARNING"},
            },
            "root": {
                "handlers": ["console"],
                "level": level,
            },
        }
    )

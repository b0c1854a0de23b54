"""
Logging configuration for the Falko service.

All modules log through the standard library: `logging.getLogger(__name__)`
in services, `current_app.logger` inside request handlers.
"""
import os
from logging.config import dictConfig


def build_logging_config(level: str) -> dict:
    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'default': {
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'default',
                'stream': 'ext://sys.stdout',
            },
        },
        'loggers': {
            'falko': {'handlers': ['console'], 'level': level, 'propagate': False},
            'gunicorn.error': {'handlers': ['console'], 'level': 'INFO', 'propagate': False},
            # Collaborator HTTP traffic is noisy at INFO
            'httpx': {'handlers': ['console'], 'level': 'WARNING', 'propagate': False},
        },
        'root': {
            'level': level,
            'handlers': ['console'],
        },
    }


def setup_logging(level: str = None) -> None:
    """Apply the logging configuration. Level defaults to LOG_LEVEL or INFO."""
    level = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    dictConfig(build_logging_config(level))


"""
Application settings management.
Uses python-dotenv to load environment variables from .env file.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from project root
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=env_path)

# Store original environment values to prevent modification
_ENV_CACHE = {}


def get_setting(key: str, default=None):
    """
    Get a setting from environment variables.

    Values are read once and cached, so later changes to the process
    environment don't shift settings in the middle of a pipeline run.

    Args:
        key: Environment variable name
        default: Default value if not found

    Returns:
        The environment variable value or default

    Example:
        >>> TREND_WINDOW = int(get_setting('TREND_WINDOW', '3'))
    """
    if key not in _ENV_CACHE:
        _ENV_CACHE[key] = os.getenv(key, default)

    value = _ENV_CACHE[key]

    # For mutable types, return a copy
    if isinstance(value, (list, dict)):
        return value.copy()

    return value


# Database paths
DATA_DB_PATH = get_setting('DATA_DB_PATH', 'data/analytics.db')
LOGS_DB_PATH = get_setting('LOGS_DB_PATH', 'data/analytics_logs.db')

# Trend window (number of prior snapshots compared against)
TREND_WINDOW = int(get_setting('TREND_WINDOW', '3'))
TREND_WINDOW_MAX = int(get_setting('TREND_WINDOW_MAX', '10'))

# Rollup sanity ceiling: max plausible mentions per source per question
SUSPICIOUS_MENTIONS_PER_SOURCE = int(get_setting('SUSPICIOUS_MENTIONS_PER_SOURCE', '10'))

# Raw weight for sources configured without one
DEFAULT_SOURCE_WEIGHT = float(get_setting('DEFAULT_SOURCE_WEIGHT', '1.0'))

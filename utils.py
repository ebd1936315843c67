import os
import re
import time
from datetime import datetime
from typing import Optional

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

FRENCH_MONTHS = [
    'janvier', 'février', 'mars', 'avril', 'mai', 'juin',
    'juillet', 'août', 'septembre', 'octobre', 'novembre', 'décembre'
]


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Read an environment variable, treating empty values as unset"""
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    return value.strip()


def get_env_int(name: str, default: int) -> int:
    value = get_env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def get_env_bool(name: str, default: bool) -> bool:
    value = get_env(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


def is_valid_email(email) -> bool:
    return bool(EMAIL_PATTERN.match(str(email or '').strip()))


def slugify_filename(value) -> str:
    """Replace every non-alphanumeric character with an underscore"""
    return re.sub(r'[^a-zA-Z0-9]', '_', str(value))


def epoch_millis() -> int:
    return int(time.time() * 1000)


def format_size_kb(size_bytes: int) -> str:
    return f"{size_bytes / 1024:.2f} KB"


def french_date(moment: Optional[datetime] = None, with_time: bool = False) -> str:
    """Format a date the way fr-FR long dates read, e.g. '18 octobre 2026'"""
    moment = moment or datetime.now()
    text = f"{moment.day} {FRENCH_MONTHS[moment.month - 1]} {moment.year}"
    if with_time:
        text += f" à {moment:%H:%M}"
    return text


def french_short_date(moment: Optional[datetime] = None) -> str:
    moment = moment or datetime.now()
    return f"{moment:%d/%m/%Y}"

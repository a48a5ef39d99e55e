"""User identity validation."""
import re
from typing import Any

from friendstalk.config import get_config
from friendstalk.errors import InvalidArgument


def is_valid_user_id(value: Any) -> bool:
    """Check that *value* is a well-formed user identity string."""
    if not isinstance(value, str) or not value:
        return False
    return re.fullmatch(get_config().identity.user_id_pattern, value) is not None


def require_user_id(value: Any, field: str = "userId") -> str:
    """Return *value* unchanged, or raise InvalidArgument if it is malformed."""
    if not is_valid_user_id(value):
        raise InvalidArgument(f"Invalid {field}: {value!r}")
    return value

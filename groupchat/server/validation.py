"""Input rules for usernames, groups, messages and tokens.

Each ``validate_*`` function returns the list of every rule the value
breaks; an empty list means the value is acceptable.
"""

import re
from typing import List, Optional

USERNAME_MIN, USERNAME_MAX = 3, 50
GROUP_NAME_MIN, GROUP_NAME_MAX = 3, 100
DESCRIPTION_MAX = 500
CONTENT_MAX = 2000

_USERNAME_RE = re.compile(r"[A-Za-z0-9_.-]+")
TOKEN_RE = re.compile(r"[a-f0-9]{64}")


def validate_username(username: str) -> List[str]:
    if not username:
        return ["Username is required"]
    errors = []
    if len(username) < USERNAME_MIN:
        errors.append(f"Username must be at least {USERNAME_MIN} characters long")
    if len(username) > USERNAME_MAX:
        errors.append(f"Username must not exceed {USERNAME_MAX} characters")
    if not _USERNAME_RE.fullmatch(username):
        errors.append("Username can only contain letters, numbers, underscores, dots, and hyphens")
    return errors


def validate_group(name: str, description: Optional[str]) -> List[str]:
    """Check a group's name (trimmed) and optional description together."""
    errors = []
    name = (name or "").strip()
    if not name:
        errors.append("Group name is required")
    elif len(name) < GROUP_NAME_MIN:
        errors.append(f"Group name must be at least {GROUP_NAME_MIN} characters long")
    elif len(name) > GROUP_NAME_MAX:
        errors.append(f"Group name must not exceed {GROUP_NAME_MAX} characters")
    if description is not None and len(description) > DESCRIPTION_MAX:
        errors.append(f"Group description must not exceed {DESCRIPTION_MAX} characters")
    return errors


def validate_content(content: str) -> List[str]:
    content = (content or "").strip()
    if not content:
        return ["Message content is required"]
    if len(content) > CONTENT_MAX:
        return [f"Message content must not exceed {CONTENT_MAX} characters"]
    return []


def validate_page(limit: int, offset: int) -> List[str]:
    errors = []
    if limit < 0:
        errors.append("Limit must not be negative")
    if offset < 0:
        errors.append("Offset must not be negative")
    return errors


def is_well_formed_token(token: str) -> bool:
    return bool(token) and TOKEN_RE.fullmatch(token) is not None

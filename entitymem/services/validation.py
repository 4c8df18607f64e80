"""
Input validation shared by the memory facades.
"""

from typing import Optional

from ..models.core import ENTITY_TYPES, IMPORTANCE_LEVELS


class MemoryValidationError(ValueError):
    """Raised when a facade call carries malformed input."""
    pass


def require_text(value, field_name: str) -> str:
    """Return ``value`` stripped, or raise if it is not a non-blank string."""
    if not isinstance(value, str) or not value.strip():
        raise MemoryValidationError(f'{field_name} is required')
    return value.strip()


def optional_project(project_id: Optional[str]) -> Optional[str]:
    """Normalise a project id; blank means no project."""
    if project_id is None:
        return None
    if not isinstance(project_id, str):
        raise MemoryValidationError('project_id must be a string')
    return project_id.strip() or None


def require_entity_type(value: str) -> str:
    entity_type = require_text(value, 'entity_type').lower()
    if entity_type not in ENTITY_TYPES:
        raise MemoryValidationError(f'entity_type must be one of {", ".join(ENTITY_TYPES)}; got "{value}"')
    return entity_type


def require_importance(value: Optional[str]) -> str:
    if value is None:
        return 'normal'
    importance = require_text(value, 'importance').lower()
    if importance not in IMPORTANCE_LEVELS:
        raise MemoryValidationError(f'importance must be one of {", ".join(IMPORTANCE_LEVELS)}; got "{value}"')
    return importance


def require_limit(value, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise MemoryValidationError(f'limit must be a positive integer; got {value!r}')
    return value

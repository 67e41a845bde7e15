"""
Validation Utilities

Request bodies are shape-checked by Pydantic at the route boundary. Rules that
span several fields (unique step orders, dependency references, date ranges)
are expressed as checks that produce a tagged result instead of raising, so
callers decide how to surface them.
"""

from dataclasses import dataclass, field
from typing import Callable, Generic, Iterable, List, TypeVar, Union

from stepwise.utils.exception import ValidationError

T = TypeVar("T")


@dataclass(frozen=True)
class Valid(Generic[T]):
    data: T

    @property
    def is_valid(self) -> bool:
        return True


@dataclass(frozen=True)
class Invalid:
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return False


ValidationResult = Union[Valid[T], Invalid]

Check = Callable[[T], Iterable[str]]


def validate_with(data: T, *checks: Check) -> ValidationResult:
    """Run every check against ``data`` and collect their error messages.

    Each check yields zero or more human-readable error strings.

    Returns:
        ``Valid(data)`` when no check reported anything, ``Invalid(errors)`` otherwise
    """
    errors: List[str] = []
    for check in checks:
        errors.extend(check(data))
    if errors:
        return Invalid(errors=errors)
    return Valid(data=data)


def unwrap(result: ValidationResult, message: str = "Validation failed") -> T:
    """Return the validated data or raise ``ValidationError`` with the collected errors."""
    if isinstance(result, Invalid):
        raise ValidationError(f"{message}: {'; '.join(result.errors)}", errors=result.errors)
    return result.data

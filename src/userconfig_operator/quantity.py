"""Kubernetes resource quantity helpers.

The API server stores quantities in canonical form ("1024Mi" comes back
as "1Gi"), so desired and observed resource lists are compared by value
rather than by string.
"""

from __future__ import annotations

from decimal import Decimal

from kubernetes.utils import parse_quantity


class QuantityError(ValueError):
    """Raised when a user-supplied quantity cannot be parsed."""

    pass


def parse(value: str, *, field: str = "") -> Decimal:
    """Parse a quantity string.

    Raises:
        QuantityError: If the value is not a valid Kubernetes quantity.
    """
    try:
        return parse_quantity(value)
    except (ValueError, TypeError, ArithmeticError) as e:
        where = f" for {field}" if field else ""
        raise QuantityError(f"Invalid quantity{where}: {value!r}") from e


def validate_resource_list(resources: dict[str, str], *, context: str = "") -> None:
    """Check every quantity in a resource list.

    Raises:
        QuantityError: On the first unparseable value.
    """
    for key, value in resources.items():
        parse(value, field=f"{context}.{key}" if context else key)


def equivalent(a: object, b: object) -> bool:
    """Compare two quantities by value, falling back to string equality."""
    if a == b:
        return True
    if not isinstance(a, str | int | float) or not isinstance(b, str | int | float):
        return False
    try:
        return parse_quantity(a) == parse_quantity(b)
    except (ValueError, TypeError, ArithmeticError):
        return False


def resource_lists_equal(a: dict[str, object] | None, b: dict[str, object] | None) -> bool:
    """Value-aware equality of two resource lists (missing == empty)."""
    a = a or {}
    b = b or {}
    if a.keys() != b.keys():
        return False
    return all(equivalent(a[key], b[key]) for key in a)

"""
Request-scoped correlation carrier.

A Carrier holds the correlation values for one unit of work: the
operation id linking every record emitted while serving it, and the
service name those records are attributed to. Carriers are immutable;
the with_* helpers return a new carrier, so a carrier can be handed to
concurrent work without being shared mutable state.

The carrier is populated once at the boundary where a unit of work
begins (see dualsink.middleware.correlation) and passed explicitly to
every facade call.
"""

from contextvars import ContextVar
from dataclasses import dataclass, replace
from typing import Optional

from dualsink.errors.exceptions import MissingServiceNameError


@dataclass(frozen=True)
class Carrier:
    """Correlation values for one unit of work."""

    operation_id: Optional[str] = None
    service_name: Optional[str] = None


# Carrier of the unit of work currently being served, published by
# framework boundaries for code that cannot receive it as a parameter
current_carrier_var: ContextVar[Optional[Carrier]] = ContextVar("current_carrier", default=None)


def with_operation_id(carrier: Carrier, operation_id: str) -> Carrier:
    """
    Return a carrier holding the given operation id.

    Args:
        carrier: The carrier to derive from (left unchanged)
        operation_id: Opaque operation identifier

    Returns:
        A new carrier
    """
    return replace(carrier, operation_id=operation_id)


def with_service_name(carrier: Carrier, service_name: str) -> Carrier:
    """
    Return a carrier holding the given service name.

    Args:
        carrier: The carrier to derive from (left unchanged)
        service_name: Name of the service emitting telemetry

    Returns:
        A new carrier
    """
    return replace(carrier, service_name=service_name)


def get_operation_id(carrier: Carrier) -> str:
    """Return the operation id, or an empty string when there is no parent operation."""
    return carrier.operation_id or ""


def get_service_name(carrier: Carrier) -> str:
    """
    Return the service name.

    Raises:
        MissingServiceNameError: If the carrier was never given a service name.
    """
    if not carrier.service_name:
        raise MissingServiceNameError()
    return carrier.service_name


def get_current_carrier() -> Optional[Carrier]:
    """
    Get the carrier published for the current unit of work.

    Returns:
        The current carrier, or None outside a unit of work
    """
    return current_carrier_var.get()


@dataclass(frozen=True)
class Correlation:
    """Correlation values resolved from a carrier for a single call."""

    service_name: str
    operation_id: str = ""

    @classmethod
    def resolve(cls, carrier: Carrier) -> "Correlation":
        # Service name first: a missing name must fail before anything is emitted
        service_name = get_service_name(carrier)
        return cls(service_name=service_name, operation_id=get_operation_id(carrier))

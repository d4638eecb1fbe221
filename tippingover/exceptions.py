"""Exception hierarchy for TippingOver.

Most failures never surface as exceptions to callers: the resolution
pipeline degrades to "no tooltip" and the client controller resets
itself. These classes mark the points where a collaborator or the
configuration loader gives up.
"""

from __future__ import annotations


class TippingOverError(Exception):
    """Base exception for all tooltip errors."""


class ConfigurationError(TippingOverError):
    """Raised when the raw configuration cannot be read at all."""


class ResolutionError(TippingOverError):
    """Raised by a collaborator that cannot answer for a link."""


class TooltipRequestError(TippingOverError):
    """Raised by a client transport when a tooltip request fails."""


class InvalidTransition(TippingOverError):
    """Raised when a client tooltip is moved into a state it cannot reach."""

    def __init__(self, element_id: str, current: object, requested: object) -> None:
        super().__init__(f"Tooltip {element_id!r} cannot move from {current} to {requested}.")
        self.element_id = element_id
        self.current = current
        self.requested = requested

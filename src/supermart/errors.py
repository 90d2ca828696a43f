"""Domain exceptions shared by the rule modules and the workflow layer."""

from __future__ import annotations


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced branch, product, or customer is unknown."""


class MissingPrerequisiteError(BusinessRuleViolation):
    """Raised when a batch job finds the data it depends on absent."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a reservation exceeds the unreserved branch stock."""


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "MissingPrerequisiteError",
    "InsufficientStockError",
]

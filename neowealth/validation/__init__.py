"""Input validation package."""

from neowealth.validation.validator import RequestValidator

__all__ = ["RequestValidator"]

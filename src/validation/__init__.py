"""Validation package."""

from src.validation.validator import InvalidMutationError, MutationValidator

__all__ = ["InvalidMutationError", "MutationValidator"]

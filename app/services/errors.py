"""Error taxonomy for crop lifecycle operations.

Blocking validation failures are raised before any row is written.
``NotFoundError`` subclasses ``LookupError`` and ``TransitionValidationError``
subclasses ``ValueError`` so route error mapping can stay generic.
"""

from __future__ import annotations

from typing import Any


class LifecycleError(Exception):
	"""Base class for crop lifecycle failures."""


class NotFoundError(LifecycleError, LookupError):
	pass


class NoCropsFoundError(NotFoundError):
	pass


class CropNotFoundError(NotFoundError):
	pass


class StageNotFoundError(NotFoundError):
	pass


class RecipeNotFoundError(NotFoundError):
	pass


class TransitionValidationError(LifecycleError, ValueError):
	"""One or more blocking preconditions failed; nothing was mutated."""

	def __init__(self, errors: list[str], details: dict[str, Any] | None = None):
		self.errors = list(errors)
		self.details = details or {}
		super().__init__("; ".join(self.errors) or "transition validation failed")


class StaleTaskError(LifecycleError):
	"""A due task no longer applies to the current crop state."""

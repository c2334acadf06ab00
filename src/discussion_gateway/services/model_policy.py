"""Model policy guard: rejects unapproved models before any network activity."""

from __future__ import annotations

import logging

from discussion_gateway.domain.exceptions import UnsupportedModelError
from discussion_gateway.domain.value_objects import ModelAllowList

logger = logging.getLogger(__name__)


class ModelPolicyGuard:
    """Validates model identifiers against a fixed :class:`ModelAllowList`."""

    def __init__(self, allow_list: ModelAllowList, default_model: str) -> None:
        self._allow_list = allow_list
        self._default_model = default_model

    @property
    def default_model(self) -> str:
        return self._default_model

    def is_allowed(self, model: str | None) -> bool:
        return self._allow_list.matches(model)

    def ensure_allowed(self, model: str | None = None) -> str:
        """Return the model to use, or raise :class:`UnsupportedModelError`.

        A missing or empty *model* falls back to the configured default, which
        is checked like any other identifier.
        """
        resolved = model or self._default_model
        if not self.is_allowed(resolved):
            logger.warning("Rejected unsupported model %r", resolved)
            raise UnsupportedModelError(resolved)
        return resolved

"""Base model for garden wire and state types.

Every model inherits from :class:`GardenBaseModel` which provides:

* ``alias_generator=to_pascal`` so the PascalCase JSON keys used by the
  firmware and the frontend map to snake_case fields.
* ``frozen=True``: snapshots handed out by the registry can be shared
  between threads without copying.
* ``extra="ignore"`` so newer firmware fields do not break decoding.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_pascal


def utcnow() -> datetime:
    return datetime.now(UTC)


class GardenBaseModel(BaseModel):
    """Base for garden models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_pascal,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict using the PascalCase wire names."""
        return self.model_dump(mode="json", by_alias=True)

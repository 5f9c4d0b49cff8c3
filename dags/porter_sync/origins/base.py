from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Protocol

if TYPE_CHECKING:
    from porter_sync.pipeline import Pipeline


class Origin(Protocol):
    name: str
    supported_features: Dict[str, bool]

    def run(self, pipeline: "Pipeline") -> None:
        ...

"""
Status sink - the externally visible coarse status of each site.
"""

from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable


@runtime_checkable
class StatusSink(Protocol):
    async def update_status(self, entity_id: str, status: str, **fields: Any) -> None:
        """Persist ``status`` and any extra columns (e.g. ``current_build_version``)."""
        ...


class InMemoryStatusSink:
    def __init__(self):
        self.history: List[Tuple[str, str, Dict[str, Any]]] = []
        self.rows: Dict[str, Dict[str, Any]] = {}

    async def update_status(self, entity_id: str, status: str, **fields: Any) -> None:
        self.history.append((entity_id, status, dict(fields)))
        row = self.rows.setdefault(entity_id, {})
        row.update(fields)
        row["status"] = status

    def current(self, entity_id: str) -> Optional[str]:
        return self.rows.get(entity_id, {}).get("status")

    def statuses(self, entity_id: str) -> List[str]:
        return [s for e, s, _ in self.history if e == entity_id]

"""Translation between local category UUIDs and remote category ids."""

from typing import Dict, Iterable, Optional

from shared.models import RemoteCategoryRecord


class CategoryIdMap:
    """Bidirectional ``local_id <-> remote_id`` map for one user's categories.

    Built once per phase from a single listing; holds no state beyond that.
    """

    def __init__(self, local_to_remote: Optional[Dict[str, str]] = None):
        self._local_to_remote: Dict[str, str] = {}
        self._remote_to_local: Dict[str, str] = {}
        for local_id, remote_id in (local_to_remote or {}).items():
            self._add(local_id, remote_id)

    @classmethod
    def from_records(cls, records: Iterable[RemoteCategoryRecord]) -> "CategoryIdMap":
        id_map = cls()
        for record in records:
            # Legacy rows without local_id live locally under their remote id
            id_map._add(record.target_id, record.id)
        return id_map

    @classmethod
    def from_rows(cls, rows: Iterable[dict]) -> "CategoryIdMap":
        return cls.from_records(RemoteCategoryRecord.from_row(row) for row in rows)

    def _add(self, local_id: str, remote_id: str):
        local_key = local_id.lower()
        self._local_to_remote[local_key] = remote_id
        self._remote_to_local[remote_id] = local_key

    def remote_id_for(self, local_id) -> Optional[str]:
        """Remote id of the category with this local UUID, or None if not synced yet."""
        if local_id is None:
            return None
        return self._local_to_remote.get(str(local_id).lower())

    def local_id_for(self, remote_id: Optional[str]) -> Optional[str]:
        if remote_id is None:
            return None
        return self._remote_to_local.get(str(remote_id))

    def __len__(self) -> int:
        return len(self._local_to_remote)

    def __contains__(self, local_id) -> bool:
        return str(local_id).lower() in self._local_to_remote

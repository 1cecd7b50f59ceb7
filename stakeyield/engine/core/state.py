# MIT License
# Copyright (c) 2025 Hashborn

from typing import Any, Dict, Optional, Set
import json
import logging
from ...protocol.types.records import ProviderState, DelegatorState, BonusGrant
from ..storage.db import StorageDB

logger = logging.getLogger(__name__)

class EngineState:
    """
    Keyed records of providers, delegators, bonus grants and counters.

    The live state caches records read from the DB. Every mutation runs on
    a `clone()`: an overlay that copies a record the first time it is read
    and remembers which keys it wrote. `persist()` writes only those keys
    and folds them back into the parent, so the cost of an operation
    depends on the records it touches, not on how many exist.
    """

    def __init__(self, db: StorageDB, parent: Optional['EngineState'] = None):
        self.db = db
        self.parent = parent
        # DB key -> ProviderState | DelegatorState | int (grant amounts, counters)
        self._records: Dict[str, Any] = {}
        # Keys written or deleted in this layer
        self._dirty: Set[str] = set()
        self._deleted: Set[str] = set()

    def clone(self) -> 'EngineState':
        """Creates an overlay on this state (for all-or-nothing operations)."""
        return EngineState(self.db, parent=self)

    # --- Raw records ---
    @staticmethod
    def _decode(key: str, raw: str) -> Any:
        if key.startswith("prov:"):
            return ProviderState.model_validate_json(raw)
        if key.startswith("del:"):
            return DelegatorState.model_validate_json(raw)
        if key.startswith("grant:"):
            return BonusGrant.model_validate_json(raw).amount
        return json.loads(raw)

    def _encode(self, key: str, value: Any) -> str:
        if key.startswith("grant:"):
            _, provider, epoch = key.rsplit(":", 2)
            return BonusGrant(provider=provider, epoch=int(epoch), amount=value).model_dump_json()
        if isinstance(value, (ProviderState, DelegatorState)):
            return value.model_dump_json()
        return json.dumps(value)

    def _get(self, key: str) -> Any:
        if key in self._records:
            return self._records[key]
        if key in self._deleted:
            return None

        if self.parent is not None:
            value = self.parent._get(key)
            if isinstance(value, (ProviderState, DelegatorState)):
                value = value.model_copy(deep=True)
        else:
            raw_json = self.db.get_state(key)
            value = self._decode(key, raw_json) if raw_json else None

        if value is not None:
            self._records[key] = value
        return value

    def _set(self, key: str, value: Any):
        self._records[key] = value
        self._dirty.add(key)
        self._deleted.discard(key)

    def _delete(self, key: str):
        self._records.pop(key, None)
        self._dirty.discard(key)
        self._deleted.add(key)

    # --- Providers ---
    def get_provider(self, address: str) -> Optional[ProviderState]:
        return self._get(f"prov:{address}")

    def get_or_create_provider(self, address: str, epoch: int = 0) -> ProviderState:
        prov = self.get_provider(address)
        if prov is None:
            prov = ProviderState(address=address, created_epoch=epoch)
            self._records[f"prov:{address}"] = prov
        return prov

    def set_provider(self, provider: ProviderState):
        self._set(f"prov:{provider.address}", provider)

    # --- Delegators ---
    def get_delegator(self, address: str) -> Optional[DelegatorState]:
        """Returns None for an address the engine has never touched (or that was reset)."""
        return self._get(f"del:{address}")

    def get_or_create_delegator(self, address: str) -> DelegatorState:
        rec = self.get_delegator(address)
        if rec is None:
            rec = DelegatorState(address=address)
            self.set_delegator(rec)
        return rec

    def set_delegator(self, delegator: DelegatorState):
        self._set(f"del:{delegator.address}", delegator)

    def delete_delegator(self, address: str):
        self._delete(f"del:{address}")

    # --- Bonus grants ---
    def get_grant(self, provider: str, epoch: int) -> int:
        return self._get(f"grant:{provider}:{epoch}") or 0

    def set_grant(self, provider: str, epoch: int, amount: int):
        self._set(f"grant:{provider}:{epoch}", amount)

    def delete_grant(self, provider: str, epoch: int):
        self._delete(f"grant:{provider}:{epoch}")

    # --- Counters ---
    def get_meta(self, name: str) -> Optional[int]:
        return self._get(f"meta:{name}")

    def set_meta(self, name: str, value: int):
        self._set(f"meta:{name}", value)

    def persist(self):
        """Writes the keys changed in this layer to DB in one batch and folds them into the parent."""
        updates = {key: self._encode(key, self._records[key]) for key in self._dirty}
        deletes = list(self._deleted)
        self.db.write_batch(updates, deletes)

        if self.parent is not None:
            for key in self._dirty:
                self.parent._records[key] = self._records[key]
            for key in self._deleted:
                self.parent._records.pop(key, None)
        self._dirty.clear()
        self._deleted.clear()
        logger.debug(f"Persisted {len(updates)} records, deleted {len(deletes)}")

# backend/tabbit/sync/ledger.py
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from tabbit.domain.models import TAB_UPDATABLE_FIELDS, Assignment, Item, Rabbit


class LedgerError(ValueError):
    """Raised when a change cannot be recorded."""


@dataclass
class PendingLedger:
    """
    Changes made since the last flush, grouped the way the remote store
    applies them.

    Recording keeps the ledger minimal: work that never reached the store
    cancels out instead of producing a delete, and toggling an assignment
    twice leaves no trace.
    """
    new_items: Dict[str, Item] = field(default_factory=dict)
    deleted_item_ids: List[str] = field(default_factory=list)
    new_rabbits: Dict[str, Rabbit] = field(default_factory=dict)
    deleted_rabbit_ids: List[str] = field(default_factory=list)
    added_assignments: List[Assignment] = field(default_factory=list)
    removed_assignments: List[Assignment] = field(default_factory=list)
    tab_updates: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (
            self.new_items
            or self.deleted_item_ids
            or self.new_rabbits
            or self.deleted_rabbit_ids
            or self.added_assignments
            or self.removed_assignments
            or self.tab_updates
        )

    def copy(self) -> "PendingLedger":
        return copy.deepcopy(self)

    def update_tab(self, updates: Mapping[str, Any]) -> None:
        unknown = set(updates) - TAB_UPDATABLE_FIELDS
        if unknown:
            raise LedgerError(f"tab fields cannot be updated: {', '.join(sorted(unknown))}")
        # Later writes to the same field replace earlier ones.
        self.tab_updates.update(updates)

    def add_item(self, item: Item) -> None:
        self.new_items[item.id] = item

    def delete_item(self, item_id: str) -> None:
        if item_id in self.new_items:
            del self.new_items[item_id]
        elif item_id not in self.deleted_item_ids:
            self.deleted_item_ids.append(item_id)
        self._prune_assignments(lambda a: a.item_id == item_id)

    def add_rabbit(self, rabbit: Rabbit) -> None:
        self.new_rabbits[rabbit.id] = rabbit

    def delete_rabbit(self, rabbit_id: str) -> None:
        if rabbit_id in self.new_rabbits:
            del self.new_rabbits[rabbit_id]
        elif rabbit_id not in self.deleted_rabbit_ids:
            self.deleted_rabbit_ids.append(rabbit_id)
        self._prune_assignments(lambda a: a.rabbit_id == rabbit_id)

    def add_assignment(self, assignment: Assignment) -> None:
        if assignment in self.removed_assignments:
            self.removed_assignments.remove(assignment)
        elif assignment not in self.added_assignments:
            self.added_assignments.append(assignment)

    def remove_assignment(self, assignment: Assignment) -> None:
        if assignment in self.added_assignments:
            self.added_assignments.remove(assignment)
        elif assignment not in self.removed_assignments:
            self.removed_assignments.append(assignment)

    def _prune_assignments(self, matches) -> None:
        # The store drops a deleted entity's edges itself.
        self.added_assignments = [a for a in self.added_assignments if not matches(a)]
        self.removed_assignments = [a for a in self.removed_assignments if not matches(a)]

    def summary(self) -> Dict[str, int]:
        """Bucket sizes, for logging."""
        return {
            "new_items": len(self.new_items),
            "deleted_items": len(self.deleted_item_ids),
            "new_rabbits": len(self.new_rabbits),
            "deleted_rabbits": len(self.deleted_rabbit_ids),
            "added_assignments": len(self.added_assignments),
            "removed_assignments": len(self.removed_assignments),
            "tab_updates": len(self.tab_updates),
        }

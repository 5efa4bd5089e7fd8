"""Sweep reports.

A report lists every resource a sweep found with the status of its deletion.
Sweeps are repeated until a report is fully complete; :meth:`Report.merge_forward`
carries items of the previous report into the next one.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Literal

__all__ = ["ItemStatus", "Report", "ReportItem"]


class ItemStatus(StrEnum):
    IN_PROGRESS = "in progress"
    COMPLETE = "complete"
    SKIPPED = "skipped"
    DRY_RUN = "dry run"


@dataclass(frozen=True, slots=True)
class ReportItem:
    id: str
    name: str
    resource_type: str
    status: ItemStatus
    action: Literal["delete"] = "delete"


@dataclass(frozen=True, slots=True)
class Report:
    items: tuple[ReportItem, ...] = ()

    def all_items_complete(self) -> bool:
        return all(i.status in (ItemStatus.COMPLETE, ItemStatus.DRY_RUN) for i in self.items)

    def count(self, status: ItemStatus) -> int:
        return sum(1 for i in self.items if i.status == status)

    def pending(self) -> list[ReportItem]:
        return [i for i in self.items if i.status not in (ItemStatus.COMPLETE, ItemStatus.DRY_RUN)]

    def merge_forward(self, previous: Report) -> Report:
        """This report, plus the items of ``previous`` it no longer lists.

        A resource that was in the previous sweep but was not found again has
        been deleted, so it is carried over as complete.
        """
        seen = {item.id for item in self.items}
        vanished = tuple(
            replace(item, status=ItemStatus.COMPLETE)
            for item in previous.items
            if item.id not in seen
        )
        return Report(items=self.items + vanished)

    def __add__(self, other: Report) -> Report:
        return Report(items=self.items + other.items)

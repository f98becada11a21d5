"""
What-if summaries from `terraform show -json <planfile>`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, List, Mapping


@dataclass
class PlanSummary:
    create: int = 0
    update: int = 0
    delete: int = 0
    no_op: int = 0
    replaced: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)

    @property
    def changes(self) -> int:
        return self.create + self.update + self.delete

    def is_idempotent(self) -> bool:
        return self.changes == 0

    def describe(self) -> str:
        return (
            f"{self.create} to create, {self.update} to modify, "
            f"{self.delete} to delete, {self.no_op} unchanged"
        )


def summarize_plan(plan: Mapping[str, Any]) -> PlanSummary:
    """Count actions per resource; a replace counts once as delete and once as create."""
    summary = PlanSummary()
    for rc in plan.get("resource_changes") or []:
        if rc.get("mode", "managed") != "managed":
            continue
        actions = (rc.get("change") or {}).get("actions") or []
        address = rc.get("address", "?")
        if "create" in actions and "delete" in actions:
            summary.create += 1
            summary.delete += 1
            summary.replaced.append(address)
        elif "create" in actions:
            summary.create += 1
        elif "delete" in actions:
            summary.delete += 1
            summary.deleted.append(address)
        elif "update" in actions:
            summary.update += 1
        else:
            summary.no_op += 1
    return summary


def summarize_plan_json(text: str) -> PlanSummary:
    return summarize_plan(json.loads(text) if text.strip() else {})

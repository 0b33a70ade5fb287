from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from afip_enrollment.utils.cancellation import CancelToken
from afip_enrollment.utils.errors import InvalidTransitionError


class Stage(StrEnum):
    IDLE = "idle"
    LOGIN = "login"
    CERTIFICATE_ALIAS = "certificate_alias"
    SERVICE_RELATION = "service_relation"
    SALES_POINT = "sales_point"
    TEARDOWN = "teardown"


PIPELINE: tuple[Stage, ...] = (
    Stage.LOGIN,
    Stage.CERTIFICATE_ALIAS,
    Stage.SERVICE_RELATION,
    Stage.SALES_POINT,
)

# Strict sequence; every non-terminal state may bail out to TEARDOWN.
TRANSITIONS: dict[Stage, frozenset[Stage]] = {
    Stage.IDLE: frozenset({Stage.LOGIN, Stage.TEARDOWN}),
    Stage.LOGIN: frozenset({Stage.CERTIFICATE_ALIAS, Stage.TEARDOWN}),
    Stage.CERTIFICATE_ALIAS: frozenset({Stage.SERVICE_RELATION, Stage.TEARDOWN}),
    Stage.SERVICE_RELATION: frozenset({Stage.SALES_POINT, Stage.TEARDOWN}),
    Stage.SALES_POINT: frozenset({Stage.TEARDOWN}),
    Stage.TEARDOWN: frozenset(),
}


class EntityMode(StrEnum):
    """Which identity picker the portal shows: a dropdown of represented entities, or none."""

    MULTI_ENTITY = "multi_entity"
    SINGLE_ENTITY = "single_entity"


_alias_lock = threading.Lock()
_last_alias_ms = 0


def new_alias(now_ms: int | None = None) -> str:
    """
    Returns "new-csr-<epoch ms>".

    Strictly increasing within the process, so two runs starting in the same
    millisecond still get different aliases.
    """
    global _last_alias_ms
    with _alias_lock:
        ms = now_ms if now_ms is not None else time.time_ns() // 1_000_000
        ms = max(ms, _last_alias_ms + 1)
        _last_alias_ms = ms
    return f"new-csr-{ms}"


def format_cuit(cuit: str) -> str:
    """'20123456789' -> '[20-12345678-9]', the way the portal prints a represented taxpayer."""
    digits = re.sub(r"\D", "", cuit)
    return f"[{digits[:2]}-{digits[2:10]}-{digits[10:]}]"


def match_organization(labels: list[str], real_name: str) -> int | None:
    """
    Index of the first label containing any whole word of `real_name` (case-insensitive).
    """
    tokens = {t.upper() for t in real_name.split() if t}
    if not tokens:
        return None
    for i, label in enumerate(labels):
        words = set(re.findall(r"\w+", (label or "").upper()))
        if tokens & words:
            return i
    return None


def _clean_cell(text: str | None) -> str:
    # &nbsp; padding in the portal grid cells
    return (text or "").replace("\u00a0", "").strip()


def find_sales_point(rows: list[list[str]], label: str) -> int | None:
    """
    Scans table rows (lists of cell texts) for a cell exactly equal to `label`
    and returns the number in that row's leading cell.
    """
    for row in rows:
        cells = [_clean_cell(c) for c in row]
        if label in cells and cells:
            match = re.match(r"\d+", cells[0])
            if match:
                return int(match.group())
    return None


def parse_record_count(text: str | None) -> int:
    match = re.search(r"\d+", text or "")
    return int(match.group()) if match else 0


@dataclass
class AutomationContext:
    """
    Per-run state of one portal session. Never shared between runs.
    """

    username: str
    password: str = field(repr=False)
    real_name: str
    alias: str
    cancel: CancelToken = field(default_factory=CancelToken)

    stage: Stage = Stage.IDLE
    failed_stage: Stage | None = None
    history: list[Stage] = field(default_factory=list)

    logged_in: bool = False
    sale_point: int | None = None
    entity_mode: EntityMode | None = None

    portal_page: Any = None
    certificate_page: Any = None
    active_pages: list[Any] = field(default_factory=list)

    def advance(self, target: Stage) -> None:
        if target not in TRANSITIONS[self.stage]:
            raise InvalidTransitionError(f"Illegal stage transition {self.stage} -> {target}")
        self.stage = target
        self.history.append(target)

    def track(self, page) -> None:
        if page is not None and page not in self.active_pages:
            self.active_pages.append(page)

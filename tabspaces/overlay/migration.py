"""Window-id migration -- carry assignments over a browser restart.

Assignments are keyed by window id, and the browser hands out new window ids
on every start.  On startup the records left under ids that no longer exist
("orphans") are matched to the freshly opened windows by fingerprint:

- group signatures (``title|color``),
- normalized tab URLs,
- tab and group counts.

Only windows that hold no assignments of their own are eligible targets, and
only confident, unambiguous matches are applied.  The browser restores
windows one after another, so the migrator polls for a while and, during the
first seconds, waits until there are at least as many eligible windows as
orphans before moving anything.

Sync passes are suspended for the whole run.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from loguru import logger

from tabspaces.overlay.host.base import HostLookupError, HostOperationError
from tabspaces.overlay.identity import extract_original_url, is_new_tab_url, make_group_fingerprint, urls_match
from tabspaces.overlay.models.workspace import GENERAL_WORKSPACE_ID, WorkspaceAssignment
from tabspaces.overlay.restore import has_assignments
from tabspaces.overlay.store.base import StorageError

if TYPE_CHECKING:
    from tabspaces.overlay.host.base import TabHost
    from tabspaces.overlay.models.workspace import WorkspaceAssignments
    from tabspaces.overlay.store.assignments import AssignmentStore
    from tabspaces.overlay.sync import WorkspaceSynchronizer

GROUP_SIMILARITY_THRESHOLD = 0.5
GROUP_SCORE_THRESHOLD = 0.6
URL_SIMILARITY_THRESHOLD = 0.35
URL_SCORE_THRESHOLD = 0.5
AMBIGUITY_MARGIN = 0.08


# ---------------------------------------------------------------------------
# Fingerprints
# ---------------------------------------------------------------------------


@dataclass
class WindowFingerprint:
    window_id: int
    tab_count: int = 0
    group_count: int = 0
    group_signatures: set[str] = field(default_factory=set)
    urls: set[str] = field(default_factory=set)


@dataclass
class Similarity:
    score: float
    group_similarity: float
    url_similarity: float
    url_overlap: int


@dataclass
class MigrationPass:
    """Outcome of a single migration pass."""

    orphaned_window_ids: list[int] = field(default_factory=list)
    meaningful_orphans: int = 0
    eligible_windows: int = 0
    moved: int = 0


def assignment_fingerprint(window_id: int, assignments: WorkspaceAssignments) -> WindowFingerprint:
    """Fingerprint of a stored window record.  ``general`` is ignored."""
    fp = WindowFingerprint(window_id)
    for workspace_id, assignment in assignments.items():
        if workspace_id == GENERAL_WORKSPACE_ID:
            continue
        fp.group_count += len(assignment.groups)
        fp.tab_count += len(assignment.tabs)
        for group in assignment.groups:
            fp.group_signatures.add(group.fingerprint)
            fp.urls.update(u for u in (extract_original_url(url) for url in group.tab_urls) if u)
        fp.urls.update(u for u in (extract_original_url(t.url) for t in assignment.tabs) if u)
    return fp


async def browser_fingerprint(host: TabHost, window_id: int) -> WindowFingerprint:
    """Fingerprint of a live window.  Placeholder pages fall back to the pending URL."""
    tabs = await host.query_tabs(window_id)
    groups = await host.query_groups(window_id)
    fp = WindowFingerprint(
        window_id,
        tab_count=len(tabs),
        group_count=len(groups),
        group_signatures={make_group_fingerprint(g.title, g.color) for g in groups},
    )
    for tab in tabs:
        if not is_new_tab_url(tab.url):
            candidate = tab.url
        elif not is_new_tab_url(tab.pending_url):
            candidate = tab.pending_url
        else:
            continue
        fp.urls.add(extract_original_url(candidate))
    return fp


def set_overlap(source: set[str], target: set[str]) -> tuple[float, int]:
    """Coverage of ``source`` by ``target`` and the intersection size.

    Stored records never include ``general`` items, so the stored set is
    usually a strict subset of the live one; coverage is measured from the
    stored side only.
    """
    if not source or not target:
        return 0.0, 0
    common = len(source & target)
    return common / len(source), common


def count_similarity(a: WindowFingerprint, b: WindowFingerprint) -> float:
    tab_diff = abs(a.tab_count - b.tab_count) / max(a.tab_count, b.tab_count, 1)
    group_diff = abs(a.group_count - b.group_count) / max(a.group_count, b.group_count, 1)
    return 1 - (tab_diff + group_diff) / 2


def fingerprint_similarity(orphan: WindowFingerprint, current: WindowFingerprint) -> Similarity:
    """Weighted similarity.  Group signatures dominate when both sides have groups."""
    group_coverage, _ = set_overlap(orphan.group_signatures, current.group_signatures)
    url_coverage, url_overlap = set_overlap(orphan.urls, current.urls)
    counts = count_similarity(orphan, current)

    if orphan.group_signatures and current.group_signatures:
        score = group_coverage * 0.6 + url_coverage * 0.3 + counts * 0.1
    elif orphan.urls and current.urls:
        score = url_coverage * 0.7 + counts * 0.3
    else:
        score = counts * 0.5
    return Similarity(score, group_coverage, url_coverage, url_overlap)


def is_confident(orphan: WindowFingerprint, best: Similarity, second_best: float, candidates: int) -> bool:
    if orphan.group_signatures:
        if best.group_similarity < GROUP_SIMILARITY_THRESHOLD and best.score < GROUP_SCORE_THRESHOLD:
            return False
    elif orphan.urls:
        if best.url_overlap == 0:
            return False
        if best.url_similarity < URL_SIMILARITY_THRESHOLD and best.score < URL_SCORE_THRESHOLD:
            return False
    else:
        # counts alone never identify a window
        return False
    return not (candidates > 1 and best.score - second_best < AMBIGUITY_MARGIN)


def merge_workspace_assignments(
    source: WorkspaceAssignments,
    existing: WorkspaceAssignments | None,
) -> WorkspaceAssignments:
    """``source`` plus whatever ``existing`` adds, deduped by group fingerprint and tab URL."""
    merged = {ws: a.model_copy(deep=True) for ws, a in source.items()}
    for workspace_id, assignment in (existing or {}).items():
        if workspace_id == GENERAL_WORKSPACE_ID:
            continue
        target = merged.setdefault(workspace_id, WorkspaceAssignment())
        for group in assignment.groups:
            if not any(g.fingerprint == group.fingerprint for g in target.groups):
                target.groups.append(group)
        for tab in assignment.tabs:
            if not any(urls_match(t.url, tab.url) for t in target.tabs):
                target.tabs.append(tab)
    return merged


# ---------------------------------------------------------------------------
# Migrator
# ---------------------------------------------------------------------------


class WindowMigrator:
    """Moves orphaned window records onto the windows that replaced them."""

    def __init__(
        self,
        host: TabHost,
        store: AssignmentStore,
        synchronizer: WorkspaceSynchronizer | None = None,
        *,
        max_wait: float = 10.0,
        poll_interval: float = 1.0,
        require_all_windows_for: float = 4.0,
    ) -> None:
        self._host = host
        self._store = store
        self._synchronizer = synchronizer
        self._max_wait = max_wait
        self._poll_interval = poll_interval
        self._require_all_windows_for = require_all_windows_for

    async def migrate_on_startup(self) -> MigrationPass:
        """Poll until every meaningful orphan is migrated or ``max_wait`` runs out.

        Ends with one best-effort pass that no longer waits for more windows.
        Errors are logged; the last pass result is returned.
        """
        self._set_sync_suspended(True)
        started = time.monotonic()
        result = MigrationPass()
        try:
            while (elapsed := time.monotonic() - started) < self._max_wait:
                waiting_for_windows = elapsed < self._require_all_windows_for
                result = await self.perform_pass(require_sufficient_windows=waiting_for_windows)
                if not result.orphaned_window_ids:
                    logger.info("Migration: no orphaned window assignments")
                    return result
                if result.meaningful_orphans == 0:
                    logger.info("Migration: only empty orphaned assignments remained, cleaned up")
                    return result
                if result.moved:
                    logger.info("Migration: migrated {} orphaned window record(s)", result.moved)
                elif waiting_for_windows and result.eligible_windows < result.meaningful_orphans:
                    logger.info(
                        "Migration: waiting for more windows ({}/{})",
                        result.eligible_windows,
                        result.meaningful_orphans,
                    )
                else:
                    logger.info("Migration: {} orphaned record(s) remain, waiting", result.meaningful_orphans)
                await asyncio.sleep(self._poll_interval)

            result = await self.perform_pass(require_sufficient_windows=False)
            if not result.orphaned_window_ids or result.meaningful_orphans == 0:
                return result
            if result.moved:
                logger.info("Migration: migrated {} orphaned window record(s) on final pass", result.moved)
            logger.warning("Migration: timed out with {} orphaned record(s) remaining", result.meaningful_orphans)
        except (HostLookupError, HostOperationError, StorageError) as exc:
            logger.error("Migration: failed: {}", exc)
        finally:
            self._set_sync_suspended(False)
        return result

    async def perform_pass(self, *, require_sufficient_windows: bool) -> MigrationPass:
        """Run one matching pass.

        Live windows are fingerprinted before the records are locked.  The
        records are then re-read under the store's locks, so edits made while
        the host was being queried are matched against, not overwritten.
        """
        current = set(await self._host.list_windows())
        live = await self._fingerprint_candidates(current, require_sufficient_windows)

        async with self._store.edit_all() as assignments, self._store.edit_active_workspaces() as active:
            for window_id in [w for w in assignments if w not in current]:
                if not has_assignments(assignments[window_id]):
                    del assignments[window_id]
                    active.pop(window_id, None)

            orphans = [w for w in assignments if w not in current]
            meaningful = [w for w in orphans if has_assignments(assignments[w])]
            eligible = [w for w in sorted(current) if not has_assignments(assignments.get(w))]
            result = MigrationPass(orphans, len(meaningful), len(eligible))
            if not orphans:
                return result
            if require_sufficient_windows and len(meaningful) > 1 and len(eligible) < len(meaningful):
                return result

            matches = self._match(orphans, [live[w] for w in eligible if w in live], assignments)
            for orphan_id, target_id in matches:
                assignments[target_id] = merge_workspace_assignments(
                    assignments[orphan_id], assignments.get(target_id)
                )
                if orphan_id in active and target_id not in active:
                    active[target_id] = active[orphan_id]
                del assignments[orphan_id]
                active.pop(orphan_id, None)
                logger.info("Migration: window {} -> window {}", orphan_id, target_id)

            remaining = [w for w in assignments if w not in current]
            result.orphaned_window_ids = remaining
            result.meaningful_orphans = sum(1 for w in remaining if has_assignments(assignments[w]))
            result.moved = len(matches)
        return result

    async def _fingerprint_candidates(
        self,
        current: set[int],
        require_sufficient_windows: bool,
    ) -> dict[int, WindowFingerprint]:
        """Fingerprints of the windows that currently look eligible.  Empty when nothing will be matched."""
        snapshot = await self._store.load_all()
        meaningful = [w for w, a in snapshot.items() if w not in current and has_assignments(a)]
        eligible = [w for w in sorted(current) if not has_assignments(snapshot.get(w))]
        if not meaningful:
            return {}
        if require_sufficient_windows and len(meaningful) > 1 and len(eligible) < len(meaningful):
            return {}
        return {w: await browser_fingerprint(self._host, w) for w in eligible}

    @staticmethod
    def _match(
        orphans: list[int],
        live: list[WindowFingerprint],
        assignments: dict[int, WorkspaceAssignments],
    ) -> list[tuple[int, int]]:
        """Confident (orphan, target) pairs, assigned greedily by score."""
        if not live:
            return []

        candidates: list[tuple[float, int, int]] = []
        for orphan_id in orphans:
            orphan = assignment_fingerprint(orphan_id, assignments[orphan_id])
            scored = sorted(
                ((fingerprint_similarity(orphan, fp), fp.window_id) for fp in live),
                key=lambda pair: pair[0].score,
                reverse=True,
            )
            best, target_id = scored[0]
            second_best = scored[1][0].score if len(scored) > 1 else 0.0
            if is_confident(orphan, best, second_best, len(live)):
                candidates.append((best.score, orphan_id, target_id))

        used_targets: set[int] = set()
        used_orphans: set[int] = set()
        matches: list[tuple[int, int]] = []
        for _, orphan_id, target_id in sorted(candidates, key=lambda c: c[0], reverse=True):
            if target_id in used_targets or orphan_id in used_orphans:
                continue
            used_targets.add(target_id)
            used_orphans.add(orphan_id)
            matches.append((orphan_id, target_id))
        return matches

    def _set_sync_suspended(self, suspended: bool) -> None:
        if self._synchronizer is not None:
            self._synchronizer.set_migration_in_progress(suspended)

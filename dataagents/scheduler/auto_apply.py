#!/usr/bin/env python3
"""
auto_apply.py
-------------
Unattended approval and application of proposals on a schedule.

Each cycle consolidates the targets with open proposals (oldest first),
keeps the groups the auto-validation rules accept, approves their enabled
blocks, archives superseded proposals and applies the groups one by one.
Between cycles the scheduler sleeps until the next run computed from its
FrequencyConfig (interval with jitter, daily or weekly window).

States:
    idle       waiting for the next run
    selecting  consolidating and filtering targets
    executing  applying selected groups
    disabled   terminal; run_cycle() refuses to run

Key Features:
    - FIFO selection by oldest pending proposal, capped per run
    - Targets locked by an interactive apply are skipped, never waited on
    - One failing group never stops the others
    - Dry-run mode reporting what would be applied
    - Run statistics persisted in the agent state table

Usage:
    scheduler = AutoApplyScheduler(store, executor, settings.auto_apply,
                                   state_store=store, logger=logger)
    result = scheduler.run_cycle()
    print(result.summary())

    scheduler.run_forever()        # blocks; stop() from another thread
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

# --- Local imports ---
from dataagents.blocks.graph import validate_required_blocks
from dataagents.core.config import AutoApplySettings
from dataagents.core.enums import BlockType
from dataagents.core.exceptions import ConflictError, SchedulerError
from dataagents.core.logging_manager import DataAgentsLogger, safe_logger
from dataagents.engine.consolidate import ConsolidationEngine
from dataagents.engine.executor import ApplicationExecutor
from dataagents.engine.models import ApplyResult, WorkingGroup
from dataagents.engine.stores import ProposalStore
from dataagents.engine.validate import AutoValidationRules, ExclusionReason
from dataagents.scheduler.frequency import (
    DEFAULT_TIMEZONE,
    calculate_next_run,
    ensure_valid,
    format_frequency_config,
)


STATS_KEY = "run_stats"
LOCKED = "locked"


class SchedulerState(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    EXECUTING = "executing"
    DISABLED = "disabled"


class StateStore(Protocol):
    """Key/value JSON state per agent (DatabaseProposalStore implements it)."""

    def get_state(self, agent_id: str, key: str, default: Any = None) -> Any:
        ...

    def set_state(self, agent_id: str, key: str, value: Any) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# RESULTS & STATISTICS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class RunStats:
    """
    Cumulative statistics over every cycle.

    Attributes:
        total_runs: Cycles run
        successful_runs: Cycles that completed
        failed_runs: Cycles aborted by an error
        total_proposals_analyzed: Open proposals looked at
        total_proposals_validated: Proposals of groups applied without failure
        total_proposals_ignored: Proposals of excluded groups
        last_run_at: Start of the last cycle
        exclusion_breakdown: Excluded groups per reason
    """

    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    total_proposals_analyzed: int = 0
    total_proposals_validated: int = 0
    total_proposals_ignored: int = 0
    last_run_at: Optional[datetime] = None
    exclusion_breakdown: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "total_proposals_analyzed": self.total_proposals_analyzed,
            "total_proposals_validated": self.total_proposals_validated,
            "total_proposals_ignored": self.total_proposals_ignored,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "exclusion_breakdown": dict(self.exclusion_breakdown),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RunStats":
        data = data or {}
        last_run = data.get("last_run_at")
        return cls(
            total_runs=int(data.get("total_runs", 0)),
            successful_runs=int(data.get("successful_runs", 0)),
            failed_runs=int(data.get("failed_runs", 0)),
            total_proposals_analyzed=int(data.get("total_proposals_analyzed", 0)),
            total_proposals_validated=int(data.get("total_proposals_validated", 0)),
            total_proposals_ignored=int(data.get("total_proposals_ignored", 0)),
            last_run_at=datetime.fromisoformat(last_run) if last_run else None,
            exclusion_breakdown={
                str(k): int(v) for k, v in (data.get("exclusion_breakdown") or {}).items()
            },
        )


@dataclass
class CycleResult:
    """Outcome of one run_cycle()."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    dry_run: bool = False
    groups_selected: int = 0
    proposals_analyzed: int = 0
    proposals_validated: int = 0
    proposals_ignored: int = 0
    exclusions: Dict[str, int] = field(default_factory=dict)
    archived_ids: List[str] = field(default_factory=list)
    apply_result: ApplyResult = field(default_factory=ApplyResult)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def exclude(self, reason: str, proposals: int) -> None:
        self.exclusions[reason] = self.exclusions.get(reason, 0) + 1
        self.proposals_ignored += proposals

    def summary(self) -> str:
        prefix = "[dry run] " if self.dry_run else ""
        text = (
            f"{prefix}{self.groups_selected} group(s) selected, "
            f"{self.proposals_analyzed} proposal(s) analyzed, "
            f"{self.proposals_validated} validated, {self.proposals_ignored} ignored; "
            f"blocks: {self.apply_result.summary()}"
        )
        if self.error:
            text += f"; error: {self.error}"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "dry_run": self.dry_run,
            "groups_selected": self.groups_selected,
            "proposals_analyzed": self.proposals_analyzed,
            "proposals_validated": self.proposals_validated,
            "proposals_ignored": self.proposals_ignored,
            "exclusions": dict(self.exclusions),
            "archived_ids": list(self.archived_ids),
            "apply_result": self.apply_result.to_dict(),
            "error": self.error,
        }


# ═══════════════════════════════════════════════════════════════════════════
# SCHEDULER
# ═══════════════════════════════════════════════════════════════════════════

class AutoApplyScheduler:
    """
    Background auto-apply loop.

    Attributes:
        proposal_store: Source of proposals
        executor: Applies the selected groups (its lock table is shared)
        settings: Auto-apply settings (thresholds, toggles, frequency)
        state_store: Where run statistics persist (in memory when None)
        consolidation: Engine building WorkingGroups
        eligibility: Auto-validation rules
        stats: Cumulative statistics
    """

    def __init__(
        self,
        proposal_store: ProposalStore,
        executor: ApplicationExecutor,
        settings: AutoApplySettings,
        state_store: Optional[StateStore] = None,
        consolidation: Optional[ConsolidationEngine] = None,
        eligibility: Optional[AutoValidationRules] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[DataAgentsLogger] = None,
        timezone_name: str = DEFAULT_TIMEZONE,
    ) -> None:
        """
        Raises:
            ValidationError: If the frequency configuration is invalid
        """
        ensure_valid(settings.frequency)

        self.proposal_store = proposal_store
        self.executor = executor
        self.settings = settings
        self.state_store = state_store
        self.logger = logger
        self.consolidation = consolidation or ConsolidationEngine(logger=logger)
        self.eligibility = eligibility or AutoValidationRules(
            settings, executor.entity_store, logger=logger
        )
        self.rng = rng or random.Random()
        self.clock = clock or _utcnow
        self.timezone_name = timezone_name

        self._state = SchedulerState.IDLE if settings.enabled else SchedulerState.DISABLED
        self._stop = threading.Event()
        self._wake = threading.Event()
        self.stats = self._load_stats()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    def _load_stats(self) -> RunStats:
        if self.state_store is None:
            return RunStats()
        return RunStats.from_dict(
            self.state_store.get_state(self.settings.agent_id, STATS_KEY, default={})
        )

    def _save_stats(self) -> None:
        if self.state_store is not None:
            self.state_store.set_state(self.settings.agent_id, STATS_KEY, self.stats.to_dict())

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def _blocks_to_apply(self, group: WorkingGroup) -> List[BlockType]:
        approved = set(group.approved_block_list())
        approved.update(self.eligibility.approvable_blocks(group))
        return [block for block in group.blocks() if block in approved]

    def _select(self, cycle: CycleResult) -> List[Tuple[WorkingGroup, List[BlockType]]]:
        """
        Consolidate targets FIFO and keep the eligible groups.

        Returns:
            (group, blocks to apply) per selected group
        """
        log = safe_logger(self.logger)
        selected = []
        for key in self.proposal_store.list_pending_target_keys():
            if cycle.proposals_analyzed >= self.settings.max_proposals_per_run:
                break
            if self._stop.is_set():
                break

            # Early skip only; apply takes the lock itself
            if self.executor.lock_table.is_locked(key.as_string()):
                cycle.exclude(LOCKED, 0)
                log.log_debug("Target busy, skipped", {"target_key": key.as_string()})
                continue

            proposals = self.proposal_store.find_by_target_key(key)
            group = self.consolidation.consolidate(proposals, key)
            if group.is_empty:
                continue
            count = len(group.pending_proposals)
            cycle.proposals_analyzed += count

            verdict = self.eligibility.evaluate(group)
            if not verdict.eligible:
                cycle.exclude(verdict.reason.value, count)
                log.log_debug(
                    "Group excluded",
                    {
                        "target_key": key.as_string(),
                        "reason": verdict.reason.value,
                        "message": verdict.message,
                    },
                )
                continue

            blocks = self._blocks_to_apply(group)
            if not blocks:
                cycle.exclude(ExclusionReason.NO_BLOCKS.value, count)
                continue

            required = validate_required_blocks(blocks, group.proposal_type, key=lambda b: b)
            if not required.valid:
                cycle.exclude(ExclusionReason.MISSING_REQUIRED_BLOCKS.value, count)
                log.log_debug(
                    "Group excluded",
                    {"target_key": key.as_string(), "reason": required.summary()},
                )
                continue

            selected.append((group, blocks))

        cycle.groups_selected = len(selected)
        return selected

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _execute(
        self,
        selected: List[Tuple[WorkingGroup, List[BlockType]]],
        cycle: CycleResult,
    ) -> None:
        log = safe_logger(self.logger)
        dry_run = cycle.dry_run

        for group, blocks in selected:
            # Cancellation only between groups
            if self._stop.is_set():
                log.log_info("Stop requested, remaining groups left for the next cycle")
                break

            key = group.target_key.as_string()
            try:
                # Approval, archiving and writes share one hold of the target lock
                result = self.executor.apply(
                    group, blocking=False, dry_run=dry_run, approve=blocks, archive=not dry_run
                )
            except ConflictError as e:
                cycle.exclude(LOCKED, 0)
                log.log_debug("Target busy, skipped", {"target_key": key, "error": str(e)})
                continue
            except Exception as e:
                log.log_error(e, {"operation": "auto_apply_group", "target_key": key})
                cycle.apply_result.failed += 1
                cycle.apply_result.errors.append(f"{key}: {type(e).__name__}: {e}")
                continue

            cycle.archived_ids.extend(result.archived_ids)
            cycle.apply_result.merge(result)
            if result.ok:
                cycle.proposals_validated += len(group.pending_proposals)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run_cycle(self) -> CycleResult:
        """
        Run one selection + execution cycle.

        Cycle-level errors are logged, counted in ``failed_runs`` and
        reported in the result instead of being raised.

        Raises:
            SchedulerError: If the scheduler is disabled
        """
        if self._state == SchedulerState.DISABLED:
            raise SchedulerError("Auto-apply scheduler is disabled")

        log = safe_logger(self.logger)
        cycle = CycleResult(started_at=self.clock(), dry_run=self.settings.dry_run)
        log.log_info("Auto-apply cycle started", {"dry_run": cycle.dry_run})

        try:
            self._state = SchedulerState.SELECTING
            selected = self._select(cycle)
            self._state = SchedulerState.EXECUTING
            self._execute(selected, cycle)
        except Exception as e:
            error = SchedulerError(f"Cycle failed: {type(e).__name__}: {e}")
            log.log_error(error, {"operation": "auto_apply_cycle"})
            cycle.error = str(error)
        finally:
            if self._state != SchedulerState.DISABLED:
                self._state = SchedulerState.IDLE

        cycle.finished_at = self.clock()
        self._record(cycle)
        log.log_operation("auto_apply_cycle_completed", cycle.to_dict())
        return cycle

    def _record(self, cycle: CycleResult) -> None:
        stats = self.stats
        stats.total_runs += 1
        if cycle.ok:
            stats.successful_runs += 1
        else:
            stats.failed_runs += 1
        stats.total_proposals_analyzed += cycle.proposals_analyzed
        stats.total_proposals_validated += cycle.proposals_validated
        stats.total_proposals_ignored += cycle.proposals_ignored
        stats.last_run_at = cycle.started_at
        for reason, count in cycle.exclusions.items():
            stats.exclusion_breakdown[reason] = stats.exclusion_breakdown.get(reason, 0) + count

        try:
            self._save_stats()
        except Exception as e:
            error = SchedulerError(f"Could not persist run statistics: {e}")
            safe_logger(self.logger).log_error(error, {"operation": "save_run_stats"})
            if cycle.error is None:
                cycle.error = str(error)
                stats.successful_runs -= 1
                stats.failed_runs += 1

    def next_wake_time(self, now: Optional[datetime] = None) -> datetime:
        return calculate_next_run(
            self.settings.frequency,
            now=now or self.clock(),
            rng=self.rng,
            tz=self.timezone_name,
        ).next_run_at

    def describe(self) -> str:
        return format_frequency_config(self.settings.frequency)

    def run_forever(self, max_cycles: Optional[int] = None) -> None:
        """
        Run cycles until stop() or disable() is called.

        Args:
            max_cycles: Stop after this many cycles (unbounded when None)
        """
        log = safe_logger(self.logger)
        if self._state == SchedulerState.DISABLED:
            log.log_warning("Auto-apply scheduler is disabled, not starting")
            return

        self._stop.clear()
        log.log_info("Auto-apply scheduler started", {"frequency": self.describe()})
        cycles = 0
        while not self._stop.is_set():
            self.run_cycle()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break

            now = self.clock()
            wake_at = self.next_wake_time(now)
            delay = max(0.0, (wake_at - now).total_seconds())
            log.log_info(
                "Next auto-apply run scheduled",
                {"next_run_at": wake_at.isoformat(), "delay_seconds": delay},
            )
            self._wake.wait(delay)
            self._wake.clear()

        log.log_info("Auto-apply scheduler stopped", {"cycles": cycles})

    def trigger(self) -> None:
        """Wake the loop for an immediate cycle."""
        self._wake.set()

    def stop(self) -> None:
        """Exit run_forever() after the current group."""
        self._stop.set()
        self._wake.set()

    def disable(self) -> None:
        self._state = SchedulerState.DISABLED
        self.stop()

#!/usr/bin/env python3
"""
executor.py
-----------
Write approved blocks of a WorkingGroup to the entity store.

Each approved block becomes one ProposalApplication, written in dependency
order (event → edition → organizer/races). Blocks are committed one by one:
a failed block never rolls back the blocks written before it, but every
block depending on it is skipped for this run.

Key Features:
    - Dependency-ordered writes with per-block failure tracking
    - Conflicting fields block their block instead of failing it
    - Store calls bounded by a timeout; a write still running keeps the target locked
    - Approval and archiving done under the same lock as the writes
    - Replay of a single application without re-consolidating
    - Identical payloads are never written twice
    - One apply/replay at a time per target key

Outcomes per block:
    applied    written, application APPLIED
    unchanged  already applied with the same payload, nothing written
    failed     store error, application FAILED
    blocked    conflicting field, no application created
    skipped    a prerequisite failed or was blocked in this run
    dry_run    payload computed, nothing written

Usage:
    executor = ApplicationExecutor(proposal_store, entity_store, logger=logger)
    result = executor.apply(group)
    print(result.summary())

    executor.replay(application_id, corrected_changes={"startDate": "2025-06-01"})
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from functools import partial
from typing import Any, Dict, List, Optional, Set

# --- Local imports ---
from dataagents.blocks.fields import blocks_for_fields, filter_changes_by_block
from dataagents.blocks.graph import (
    REQUIRED_BLOCKS,
    explain_execution_order,
    get_all_dependencies,
    sort_by_dependencies,
)
from dataagents.core.enums import ApplicationStatus, BlockType, ProposalStatus
from dataagents.core.exceptions import (
    ConflictError,
    DatabaseError,
    StoreError,
    ValidationError,
)
from dataagents.core.logging_manager import DataAgentsLogger, safe_logger
from dataagents.engine.changes import canonical
from dataagents.engine.locks import KeyedLockTable, LockHold
from dataagents.engine.models import (
    ApplyResult,
    BlockOutcome,
    OutcomeStatus,
    Proposal,
    ProposalApplication,
    TargetKey,
    WorkingGroup,
    WriteResult,
)
from dataagents.engine.stores import EntityStore, ProposalStore
from dataagents.engine.validate import RequiredBlockValidator


class WriteTimeoutError(StoreError):
    """A block write outlived the store timeout and is still running."""

    def __init__(self, timeout: float, future: Future) -> None:
        super().__init__(
            f"Entity store call timed out after {timeout}s (write still running)",
            kind=StoreError.TIMEOUT,
        )
        self.future = future


def _same_payload(a: Optional[Dict[str, Any]], b: Optional[Dict[str, Any]]) -> bool:
    return canonical(a or {}) == canonical(b or {})


def _advance_key(key: TargetKey, write: WriteResult) -> TargetKey:
    """Fill the id a block write just created into the key used by later blocks."""
    if write.record_id is None:
        return key
    if write.block_type == BlockType.EVENT and key.event_id is None:
        return TargetKey(write.record_id, key.edition_id, key.race_id)
    if write.block_type == BlockType.EDITION and key.edition_id is None:
        return TargetKey(key.event_id, write.record_id, key.race_id)
    return key


class ApplicationExecutor:
    """
    Applies approved blocks and records ProposalApplications.

    Attributes:
        proposal_store: Proposal and application persistence
        entity_store: Downstream store receiving block writes
        lock_table: Per-target lock table (shared with the scheduler)
        store_timeout: Seconds allowed for one entity store call
        logger: Optional logger
    """

    def __init__(
        self,
        proposal_store: ProposalStore,
        entity_store: EntityStore,
        lock_table: Optional[KeyedLockTable] = None,
        store_timeout: float = 30.0,
        logger: Optional[DataAgentsLogger] = None,
        max_workers: int = 4,
    ) -> None:
        self.proposal_store = proposal_store
        self.entity_store = entity_store
        self.lock_table = lock_table or KeyedLockTable()
        self.store_timeout = store_timeout
        self.logger = logger
        self.validator = RequiredBlockValidator()
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="entity-store"
        )

    def close(self) -> None:
        """Stop the store worker threads (a hung call is abandoned, not joined)."""
        self._pool.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "ApplicationExecutor":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Store access
    # -------------------------------------------------------------------------

    def _write(self, block: BlockType, key: TargetKey, payload: Dict[str, Any]) -> WriteResult:
        """
        Upsert one block under the store timeout.

        Raises:
            WriteTimeoutError: When the write outlives the timeout and keeps running
            StoreError: On store failure, or a timeout before the write started
        """
        future = self._pool.submit(self.entity_store.upsert_block, block, key, payload)
        try:
            return future.result(timeout=self.store_timeout)
        except FuturesTimeout:
            if future.cancel():
                raise StoreError(
                    f"Entity store call timed out after {self.store_timeout}s",
                    kind=StoreError.TIMEOUT,
                )
            raise WriteTimeoutError(self.store_timeout, future)
        except DatabaseError as e:
            raise StoreError(str(e), kind=StoreError.UNREACHABLE) from e

    def _settle_late_write(self, application_id: str, future: Future) -> None:
        """Record the real outcome of a write that finished after its timeout."""
        if future.cancelled():
            return
        log = safe_logger(self.logger)
        error = future.exception()
        try:
            if error is None:
                application = self.proposal_store.update_application(
                    application_id,
                    ApplicationStatus.APPLIED,
                    log=f"Write completed after the timeout (record {future.result().record_id})",
                )
                proposal = self.proposal_store.get_proposal(application.proposal_id)
                if proposal is not None:
                    self._refresh_statuses([proposal])
            else:
                kind = error.kind if isinstance(error, StoreError) else StoreError.UNREACHABLE
                message = f"[{kind}] {error}"
                self.proposal_store.update_application(
                    application_id,
                    ApplicationStatus.FAILED,
                    error=message,
                    log=f"Write failed after the timeout: {message}",
                )
        except Exception as e:
            log.log_error(e, {"operation": "settle_late_write", "application_id": application_id})
            return
        log.log_operation(
            "late_write_settled",
            {"application_id": application_id, "applied": error is None},
        )

    def _latest_applications(
        self, proposal_ids: List[str]
    ) -> Dict[Optional[BlockType], ProposalApplication]:
        latest: Dict[Optional[BlockType], ProposalApplication] = {}
        if not proposal_ids:
            return latest
        for application in self.proposal_store.find_applications(proposal_ids):
            latest[application.block_type] = application
        return latest

    def _applied_blocks(self, proposal_ids: List[str]) -> Set[BlockType]:
        """Blocks with an APPLIED application; legacy ones count for their fields' blocks."""
        applied: Set[BlockType] = set()
        for block, application in self._latest_applications(proposal_ids).items():
            if application.status != ApplicationStatus.APPLIED:
                continue
            if block is None:
                applied.update(blocks_for_fields(application.applied_changes))
            else:
                applied.add(block)
        return applied

    def _last_applied_payload(
        self, proposal_ids: List[str], block: Optional[BlockType], exclude_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        payload = None
        for application in self.proposal_store.find_applications(proposal_ids, block_type=block):
            if application.id == exclude_id:
                continue
            if application.status == ApplicationStatus.APPLIED:
                payload = application.applied_changes
        return payload

    # -------------------------------------------------------------------------
    # Payloads
    # -------------------------------------------------------------------------

    @staticmethod
    def build_payload(group: WorkingGroup, block: BlockType) -> Dict[str, Any]:
        """
        Field values to write for ``block``.

        Raises:
            ConflictError: If a field of the block has tied candidates
        """
        return {
            fld.field: fld.resolved_value().to_json()
            for fld in group.fields_for_block(block)
        }

    # -------------------------------------------------------------------------
    # Single application
    # -------------------------------------------------------------------------

    def _run_application(
        self,
        application: ProposalApplication,
        key: TargetKey,
        previous_payload: Optional[Dict[str, Any]],
        result: ApplyResult,
        held: Optional[LockHold] = None,
    ) -> Optional[TargetKey]:
        """
        Write one PENDING application and record its final status.

        A write still running after the timeout keeps ``held`` locked until it
        settles, and its real outcome replaces the FAILED status.

        Returns:
            The target key later blocks should use (with any id created by
            this write), or None when the application ended FAILED
        """
        log = safe_logger(self.logger)
        payload = application.applied_changes

        if previous_payload is not None and _same_payload(previous_payload, payload):
            self.proposal_store.update_application(
                application.id,
                ApplicationStatus.APPLIED,
                log="Payload identical to the last applied one, write skipped",
            )
            result.success += 1
            result.applied_ids.append(application.id)
            result.outcomes.append(
                BlockOutcome(application.block_type, OutcomeStatus.UNCHANGED, application.id)
            )
            return key

        blocks = (
            [application.block_type]
            if application.block_type is not None
            else blocks_for_fields(payload)
        )
        started = time.perf_counter()
        try:
            written = []
            for block in blocks:
                if application.block_type is not None:
                    fields = payload
                else:
                    fields = filter_changes_by_block(payload, block)
                write = self._write(block, key, fields)
                key = _advance_key(key, write)
                written.append(f"{block.value}={write.record_id}" + (" (new)" if write.created else ""))
        except StoreError as e:
            message = f"[{e.kind}] {e}"
            self.proposal_store.update_application(
                application.id, ApplicationStatus.FAILED, error=message, log=f"Write failed: {message}"
            )
            if isinstance(e, WriteTimeoutError):
                e.future.add_done_callback(partial(self._settle_late_write, application.id))
                if held is not None:
                    held.release_when_done(e.future)
            log.log_error(
                e,
                {
                    "operation": "apply_block",
                    "application_id": application.id,
                    "block_type": getattr(application.block_type, "value", None),
                    "target_key": key.as_string(),
                },
            )
            result.failed += 1
            result.failed_ids.append(application.id)
            result.errors.append(f"{application.id}: {message}")
            result.outcomes.append(
                BlockOutcome(application.block_type, OutcomeStatus.FAILED, application.id, message)
            )
            return None
        except Exception as e:
            self.proposal_store.update_application(
                application.id,
                ApplicationStatus.FAILED,
                error=f"{type(e).__name__}: {e}",
                log="Unexpected error during write",
            )
            raise

        self.proposal_store.update_application(
            application.id,
            ApplicationStatus.APPLIED,
            log=f"Written in {time.perf_counter() - started:.3f}s (records: {', '.join(written)})",
        )
        result.success += 1
        result.applied_ids.append(application.id)
        result.outcomes.append(
            BlockOutcome(application.block_type, OutcomeStatus.APPLIED, application.id)
        )
        return key

    # -------------------------------------------------------------------------
    # Proposal status
    # -------------------------------------------------------------------------

    def _refresh_statuses(self, proposals: List[Proposal]) -> None:
        ids = [p.id for p in proposals]
        applied = self._applied_blocks(ids)
        for proposal in proposals:
            needed = set(proposal.blocks()) | set(REQUIRED_BLOCKS.get(proposal.type, []))
            if needed and needed <= applied:
                target = ProposalStatus.APPROVED
            elif applied & set(proposal.blocks()):
                target = ProposalStatus.PARTIALLY_APPROVED
            else:
                continue
            if target != proposal.status and proposal.status.can_transition_to(target):
                self.proposal_store.update_status(proposal.id, target)
                proposal.status = target

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def apply(
        self,
        group: WorkingGroup,
        blocking: bool = True,
        dry_run: bool = False,
        approve: Optional[List[BlockType]] = None,
        archive: bool = False,
    ) -> ApplyResult:
        """
        Apply every approved, not yet applied block of ``group``.

        Approving, archiving and writing all happen under the target lock,
        so nothing else touches the target's proposals in between.

        Args:
            group: Consolidated group
            blocking: Wait for the target lock (False raises ConflictError when busy)
            dry_run: Compute outcomes without writing or recording anything
            approve: Blocks to approve on the group's proposals first
            archive: Archive the superseded proposals before writing

        Returns:
            ApplyResult accumulated over all blocks

        Raises:
            RequiredBlocksError: If required blocks are not approved
            ConflictError: If ``blocking`` is False and the target is busy
        """
        log = safe_logger(self.logger)
        key = group.target_key
        result = ApplyResult()
        if group.is_empty:
            return result

        with self.lock_table.hold(key.as_string(), blocking=blocking) as held:
            if approve:
                self.approve_blocks(group, approve, dry_run=dry_run)
            self.validator.ensure(group)
            if archive and not dry_run:
                result.archived_ids = self.archive_superseded(group)

            proposal_ids = group.proposal_ids
            latest = self._latest_applications(proposal_ids)

            candidates: List[BlockType] = []
            for block in group.approved_block_list():
                current = latest.get(block)
                if current is not None and current.status == ApplicationStatus.APPLIED:
                    result.outcomes.append(
                        BlockOutcome(block, OutcomeStatus.UNCHANGED, current.id, "Already applied")
                    )
                    continue
                candidates.append(block)

            ordered = sort_by_dependencies(candidates, key=lambda block: block)
            log.log_info(
                explain_execution_order(ordered, key=lambda block: block),
                {"target_key": key.as_string(), "dry_run": dry_run},
            )

            halted: Set[BlockType] = set()
            write_key = key
            for block in ordered:
                contributors = group.proposals_for_block(block)
                owner = contributors[0] if contributors else group.pending_proposals[0]

                if held.deferred:
                    # A timed-out write of this target is still running
                    halted.add(block)
                    message = f"Skipped {block.value}: an earlier write of this target is still running"
                    result.skipped += 1
                    result.errors.append(f"{owner.id}: {message}")
                    result.outcomes.append(BlockOutcome(block, OutcomeStatus.SKIPPED, None, message))
                    continue

                broken = [dep for dep in get_all_dependencies(block) if dep in halted]
                if broken:
                    halted.add(block)
                    message = f"Skipped {block.value}: prerequisite {broken[0].value} did not apply"
                    result.skipped += 1
                    result.errors.append(f"{owner.id}: {message}")
                    result.outcomes.append(BlockOutcome(block, OutcomeStatus.SKIPPED, None, message))
                    continue

                try:
                    payload = self.build_payload(group, block)
                except ConflictError as e:
                    halted.add(block)
                    message = f"Blocked: {e}"
                    result.blocked += 1
                    result.errors.append(f"{owner.id}: {message}")
                    result.outcomes.append(BlockOutcome(block, OutcomeStatus.BLOCKED, None, message))
                    log.log_warning(message, {"target_key": key.as_string(), "block": block.value})
                    continue

                if dry_run:
                    result.outcomes.append(
                        BlockOutcome(block, OutcomeStatus.DRY_RUN, None, f"{len(payload)} field(s)")
                    )
                    continue

                previous = self._last_applied_payload(proposal_ids, block)
                application = self.proposal_store.create_application(owner.id, block, payload)
                next_key = self._run_application(application, write_key, previous, result, held)
                if next_key is None:
                    halted.add(block)
                else:
                    write_key = next_key

            if not dry_run:
                self._refresh_statuses(group.pending_proposals)

        log.log_operation(
            "apply_completed",
            {
                "target_key": key.as_string(),
                "dry_run": dry_run,
                "success": result.success,
                "failed": result.failed,
                "blocked": result.blocked,
                "skipped": result.skipped,
                "applied_ids": result.applied_ids,
                "failed_ids": result.failed_ids,
                "archived_ids": result.archived_ids,
            },
        )
        return result

    def replay(
        self,
        application_id: str,
        corrected_changes: Optional[Dict[str, Any]] = None,
        blocking: bool = True,
    ) -> ApplyResult:
        """
        Re-run one FAILED or APPLIED application.

        The application is reset to PENDING (replay_count + 1), optionally
        with corrected changes, then written again. Consolidation is not
        re-run.

        Raises:
            ValidationError: If the application does not exist or is PENDING
        """
        log = safe_logger(self.logger)
        application = self.proposal_store.get_application(application_id)
        if application is None:
            raise ValidationError(f"Application not found: {application_id}")
        if application.status not in (ApplicationStatus.FAILED, ApplicationStatus.APPLIED):
            raise ValidationError(
                f"Only FAILED or APPLIED applications can be replayed "
                f"({application_id} is {application.status.value})"
            )
        if corrected_changes is not None and not isinstance(corrected_changes, dict):
            raise ValidationError("Corrected changes must be a mapping of field -> value")

        proposal = self.proposal_store.get_proposal(application.proposal_id)
        if proposal is None:
            raise ValidationError(f"Proposal not found: {application.proposal_id}")

        key = proposal.target_key
        result = ApplyResult()
        with self.lock_table.hold(key.as_string(), blocking=blocking) as held:
            previous_status = application.status
            previous_payload = (
                dict(application.applied_changes)
                if previous_status == ApplicationStatus.APPLIED
                else self._last_applied_payload(
                    [proposal.id], application.block_type, exclude_id=application.id
                )
            )

            reset = self.proposal_store.reset_application(
                application_id,
                applied_changes=corrected_changes,
                log=f"Replay requested (was {previous_status.value})"
                + (", changes corrected" if corrected_changes is not None else ""),
            )
            log.log_info(
                f"Replaying application {application_id}",
                {
                    "block_type": getattr(reset.block_type, "value", None),
                    "replay_count": reset.replay_count,
                    "target_key": key.as_string(),
                },
            )
            self._run_application(reset, key, previous_payload, result, held)
            self._refresh_statuses([proposal])

        log.log_operation(
            "replay_completed",
            {
                "application_id": application_id,
                "success": result.success,
                "failed": result.failed,
                "errors": result.errors,
            },
        )
        return result

    def approve_blocks(
        self, group: WorkingGroup, blocks: List[BlockType], dry_run: bool = False
    ) -> List[str]:
        """
        Mark ``blocks`` approved on every open proposal contributing to them.

        Superseded proposals are approved too, since their fields count
        towards the group's approvals. The proposals and
        ``group.approved_blocks`` are updated in place.

        Returns:
            Ids of the proposals that gained an approval
        """
        updated = []
        for proposal in group.pending_proposals + group.superseded_proposals:
            missing = {
                block: True
                for block in proposal.blocks()
                if block in blocks and not proposal.is_block_approved(block)
            }
            if not missing:
                continue
            if not dry_run:
                self.proposal_store.update_approved_blocks(proposal.id, missing)
            proposal.approved_blocks.update(missing)
            updated.append(proposal.id)

        touched = set(group.blocks())
        for block in blocks:
            if block in touched:
                group.approved_blocks[block] = True
        return updated

    def archive_superseded(self, group: WorkingGroup) -> List[str]:
        """
        Archive the proposals consolidation found redundant.

        Returns:
            Ids of archived proposals
        """
        archived = []
        for proposal_id, survivor_id in group.superseded.items():
            self.proposal_store.update_status(
                proposal_id, ProposalStatus.ARCHIVED, reason=f"superseded by {survivor_id}"
            )
            archived.append(proposal_id)
        if archived:
            safe_logger(self.logger).log_info(
                "Archived superseded proposals",
                {"target_key": group.target_key.as_string(), "proposal_ids": archived},
            )
        return archived

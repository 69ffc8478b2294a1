"""
Session Write Coordinator
=========================
The single entry point the UI uses to log treatments.

Online path, per write:
  validate -> match schedule -> duplicate check (medication only)
  -> start remote write -> optimistic cache update -> await write
  -> roll back the cache if the write failed -> bookkeeping -> analytics

Offline path:
  validate -> match schedule -> enqueue -> optimistic cache update

Quick-log writes only the slots that the cache does not already show as
completed, and writes nothing if any generated session is invalid.
Offline quick-log is queued without touching the cache: its remaining
slots are recomputed from cache state when it replays, with session ids
derived from the operation id so a retried batch lands on the same rows.

replay_operation() is what the offline queue calls. Replayed creates are
not re-applied to the cache (they were applied when queued) and skip
duplicate detection.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

from hydracat.core.dates import Clock, minutes_between
from hydracat.db.local_store import LocalStoreError
from hydracat.models.operation import (
    CreateFluidOperation,
    CreateMedicationOperation,
    QueuedOperation,
    QuickLogAllOperation,
    RecentSession,
    UpdateFluidOperation,
    UpdateMedicationOperation,
)
from hydracat.models.results import (
    AcceptedWithWarning,
    DuplicateDetected,
    FailureKind,
    FluidLogResult,
    LogFailure,
    LogSuccess,
    MedicationLogResult,
    QuickLogResult,
    RejectedQueueFull,
    UpdateLogResult,
)
from hydracat.models.schedule import Schedule
from hydracat.models.session import FluidSession, MedicationSession, slot_session_id
from hydracat.models.summary import DailySummaryCache, SessionContribution
from hydracat.services import analytics as events
from hydracat.services.analytics import Analytics
from hydracat.services.connectivity import ConnectivityMonitor
from hydracat.services.duplicate_detection import DuplicateDetector, find_conflict
from hydracat.services.offline_queue import OfflineQueue
from hydracat.services.profile import ActiveProfile, ProfileProvider
from hydracat.services.remote_store import RemoteStore, RemoteStoreError
from hydracat.services.schedule_matching import (
    Slot,
    match_fluid_schedule,
    match_medication_schedule,
    todays_slots,
)
from hydracat.services.summary_cache import LocalSummaryCache
from hydracat.services.summary_reader import RemoteSummaryReader
from hydracat.services.validation import validate_fluid_session, validate_medication_session

logger = logging.getLogger(__name__)

# Upper bound on sessions read back when re-hydrating the cache
_WARM_SESSION_LIMIT = 50


class WriteStage(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CHECKING_DUPLICATES = "checking_duplicates"
    WRITING = "writing"
    CACHE_UPDATING = "cache_updating"
    ANALYTICS_EMITTING = "analytics_emitting"
    QUEUING = "queuing"


class NotificationCanceller(Protocol):
    async def cancel_for_slot(self, pet_id: str, schedule_id: str, scheduled_time: datetime) -> None: ...


class ReplayError(Exception):
    """A queued operation could not be written."""


class QuickLogInvalid(ValueError):
    """A schedule produced a session that fails validation."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(errors[0])
        self.errors = errors


class LoggingCoordinator:

    def __init__(
        self,
        cache: LocalSummaryCache,
        reader: RemoteSummaryReader,
        remote: RemoteStore,
        detector: DuplicateDetector,
        queue: OfflineQueue,
        connectivity: ConnectivityMonitor,
        profiles: ProfileProvider,
        analytics: Optional[Analytics] = None,
        notifications: Optional[NotificationCanceller] = None,
        clock: Clock = datetime.now,
        schedule_window_minutes: int = 120,
        duplicate_window_minutes: int = 120,
    ) -> None:
        self._cache = cache
        self._reader = reader
        self._remote = remote
        self._detector = detector
        self._queue = queue
        self._connectivity = connectivity
        self._profiles = profiles
        self._analytics = analytics or Analytics()
        self._notifications = notifications
        self._clock = clock
        self._schedule_window = schedule_window_minutes
        self._duplicate_window = duplicate_window_minutes
        self.stage = WriteStage.IDLE

    # ------------------------------------------------------------------
    # Medication
    # ------------------------------------------------------------------

    async def log_medication_session(
        self,
        session: MedicationSession,
        todays_schedules: list[Schedule],
        *,
        profile: Optional[ActiveProfile] = None,
    ) -> MedicationLogResult:
        try:
            profile = self._resolve_profile(profile)
            if profile is None:
                return self._fail(FailureKind.NO_ACTIVE_SUBJECT, "medication")
            session = session.model_copy(update={"user_id": profile.user_id, "pet_id": profile.pet_id})

            self._enter(WriteStage.VALIDATING)
            errors = validate_medication_session(session, self._clock())
            if errors:
                return self._fail(FailureKind.VALIDATION, "medication", errors)

            match = match_medication_schedule(session, todays_schedules, self._schedule_window)
            if match is not None:
                session = session.with_schedule(match.schedule.id, match.scheduled_time)

            if not self._connectivity.is_connected:
                return await self._queue_medication(profile, session, todays_schedules)

            self._enter(WriteStage.CHECKING_DUPLICATES)
            candidates = await self._detector.candidates_for(
                profile.user_id, profile.pet_id, session.medication_name, session.effective_time,
            )
            conflict = find_conflict(candidates, session.effective_time, self._duplicate_window)
            if conflict is not None:
                logger.info(
                    "Duplicate %s for pet %s near %s", session.medication_name, profile.pet_id, conflict.effective_time,
                )
                self._analytics.emit(
                    events.DUPLICATE_DETECTED, medication_name=session.medication_name, source=conflict.source,
                )
                return DuplicateDetected(
                    medication_name=session.medication_name,
                    conflicting_time=conflict.effective_time,
                    existing_session_id=conflict.session_id,
                )

            contributions = [SessionContribution.for_medication(session)]
            error = await self._write_optimistically(
                self._remote.commit_sessions(profile.user_id, profile.pet_id, medication_sessions=[session]),
                lambda: self._cache.apply_contributions(profile.user_id, profile.pet_id, contributions),
                lambda: self._cache.revert(profile.user_id, profile.pet_id, contributions),
            )
            if error is not None:
                return self._fail(FailureKind.REMOTE_WRITE, "medication", [error])

            bookkeeping_error = await self._after_write(profile, [session])
            self._enter(WriteStage.ANALYTICS_EMITTING)
            self._analytics.emit(
                events.SESSION_LOGGED,
                treatment_type="medication",
                medication_name=session.medication_name,
                matched_schedule=match is not None,
            )
            return LogSuccess(session_id=session.id, bookkeeping_error=bookkeeping_error)
        finally:
            self._enter(WriteStage.IDLE)

    async def update_medication_session(
        self,
        old_session: MedicationSession,
        new_session: MedicationSession,
        *,
        profile: Optional[ActiveProfile] = None,
    ) -> UpdateLogResult:
        try:
            profile = self._resolve_profile(profile)
            if profile is None:
                return self._fail(FailureKind.NO_ACTIVE_SUBJECT, "medication_update")
            self._enter(WriteStage.VALIDATING)
            errors = validate_medication_session(new_session, self._clock())
            if errors:
                return self._fail(FailureKind.VALIDATION, "medication_update", errors)

            def apply(sign: int):
                was, now = (old_session.completed, new_session.completed)
                if sign < 0:
                    was, now = now, was
                return self._cache.apply_medication_update(
                    profile.user_id,
                    profile.pet_id,
                    new_session.medication_name,
                    sign * (new_session.dosage_given - old_session.dosage_given),
                    new_session.effective_time,
                    was,
                    now,
                )

            if not self._connectivity.is_connected:
                operation = UpdateMedicationOperation(
                    user_id=profile.user_id, pet_id=profile.pet_id, created_at=self._clock(),
                    old_session=old_session, new_session=new_session,
                )
                return await self._queue_update(operation, lambda: apply(1), new_session.id)

            error = await self._write_optimistically(
                self._remote.update_medication_session(profile.user_id, profile.pet_id, old_session, new_session),
                lambda: apply(1),
                lambda: apply(-1),
            )
            if error is not None:
                return self._fail(FailureKind.REMOTE_WRITE, "medication_update", [error])
            self._reader.clear_all_caches()
            self._enter(WriteStage.ANALYTICS_EMITTING)
            self._analytics.emit(events.SESSION_UPDATED, treatment_type="medication")
            return LogSuccess(session_id=new_session.id)
        finally:
            self._enter(WriteStage.IDLE)

    # ------------------------------------------------------------------
    # Fluid
    # ------------------------------------------------------------------

    async def log_fluid_session(
        self,
        session: FluidSession,
        active_schedule: Optional[Schedule] = None,
        *,
        profile: Optional[ActiveProfile] = None,
    ) -> FluidLogResult:
        try:
            profile = self._resolve_profile(profile)
            if profile is None:
                return self._fail(FailureKind.NO_ACTIVE_SUBJECT, "fluid")
            session = session.model_copy(update={"user_id": profile.user_id, "pet_id": profile.pet_id})

            self._enter(WriteStage.VALIDATING)
            errors = validate_fluid_session(session, self._clock())
            if errors:
                return self._fail(FailureKind.VALIDATION, "fluid", errors)

            schedules = [active_schedule] if active_schedule is not None else []
            match = match_fluid_schedule(session, schedules, self._schedule_window)
            if match is not None:
                session = session.with_schedule(match.schedule.id, match.scheduled_time)

            contributions = [SessionContribution.for_fluid(session)]

            if not self._connectivity.is_connected:
                self._enter(WriteStage.QUEUING)
                operation = CreateFluidOperation(
                    user_id=profile.user_id, pet_id=profile.pet_id, created_at=self._clock(),
                    session=session, todays_schedule=active_schedule,
                )
                return await self._enqueue_then_apply(
                    operation,
                    lambda: self._cache.apply_contributions(profile.user_id, profile.pet_id, contributions),
                    session.id,
                )

            error = await self._write_optimistically(
                self._remote.commit_sessions(profile.user_id, profile.pet_id, fluid_sessions=[session]),
                lambda: self._cache.apply_contributions(profile.user_id, profile.pet_id, contributions),
                lambda: self._cache.revert(profile.user_id, profile.pet_id, contributions),
            )
            if error is not None:
                return self._fail(FailureKind.REMOTE_WRITE, "fluid", [error])

            bookkeeping_error = await self._after_write(profile, [session])
            self._enter(WriteStage.ANALYTICS_EMITTING)
            self._analytics.emit(
                events.SESSION_LOGGED, treatment_type="fluid", matched_schedule=match is not None,
            )
            return LogSuccess(session_id=session.id, bookkeeping_error=bookkeeping_error)
        finally:
            self._enter(WriteStage.IDLE)

    async def update_fluid_session(
        self,
        old_session: FluidSession,
        new_session: FluidSession,
        *,
        profile: Optional[ActiveProfile] = None,
    ) -> UpdateLogResult:
        try:
            profile = self._resolve_profile(profile)
            if profile is None:
                return self._fail(FailureKind.NO_ACTIVE_SUBJECT, "fluid_update")
            self._enter(WriteStage.VALIDATING)
            errors = validate_fluid_session(new_session, self._clock())
            if errors:
                return self._fail(FailureKind.VALIDATION, "fluid_update", errors)

            delta = new_session.volume_given - old_session.volume_given

            def apply():
                return self._cache.apply_fluid_update(profile.user_id, profile.pet_id, delta)

            if not self._connectivity.is_connected:
                operation = UpdateFluidOperation(
                    user_id=profile.user_id, pet_id=profile.pet_id, created_at=self._clock(),
                    old_session=old_session, new_session=new_session,
                )
                return await self._queue_update(operation, apply, new_session.id)

            error = await self._write_optimistically(
                self._remote.update_fluid_session(profile.user_id, profile.pet_id, old_session, new_session),
                apply,
                lambda: self._cache.apply_fluid_update(profile.user_id, profile.pet_id, -delta),
            )
            if error is not None:
                return self._fail(FailureKind.REMOTE_WRITE, "fluid_update", [error])
            self._reader.clear_all_caches()
            self._enter(WriteStage.ANALYTICS_EMITTING)
            self._analytics.emit(events.SESSION_UPDATED, treatment_type="fluid")
            return LogSuccess(session_id=new_session.id)
        finally:
            self._enter(WriteStage.IDLE)

    # ------------------------------------------------------------------
    # Quick-log
    # ------------------------------------------------------------------

    async def quick_log_all_treatments(
        self,
        all_todays_schedules: list[Schedule],
        *,
        profile: Optional[ActiveProfile] = None,
    ):
        """Log every slot due today that is not already completed.

        Returns QuickLogResult (session_count 0 when nothing remains) or
        LogFailure. Nothing is written or queued if any generated session
        fails validation.
        """
        try:
            profile = self._resolve_profile(profile)
            if profile is None:
                return self._fail(FailureKind.NO_ACTIVE_SUBJECT, "quick_log")

            if not self._connectivity.is_connected:
                self._enter(WriteStage.QUEUING)
                remaining = await self._remaining_slots(profile, all_todays_schedules, self._clock().date())
                if not remaining:
                    return QuickLogResult(session_count=0)
                self._enter(WriteStage.VALIDATING)
                errors = self._validate_generated(*self._sessions_for(profile, remaining))
                if errors:
                    return self._fail(FailureKind.VALIDATION, "quick_log", errors)
                self._enter(WriteStage.QUEUING)
                operation = QuickLogAllOperation(
                    user_id=profile.user_id, pet_id=profile.pet_id, created_at=self._clock(),
                    todays_schedules=all_todays_schedules,
                )
                try:
                    result = await self._queue.enqueue(operation)
                except LocalStoreError as exc:
                    return self._fail(FailureKind.UNEXPECTED, "quick_log", [str(exc)])
                if isinstance(result, RejectedQueueFull):
                    return LogFailure.of(FailureKind.QUEUE_FULL, message=result.message)
                warning = result.message if isinstance(result, AcceptedWithWarning) else None
                return QuickLogResult(session_count=len(remaining), queued=True, warning=warning)

            try:
                count, bookkeeping_error = await self._quick_log_online(
                    profile, all_todays_schedules, self._clock().date(),
                )
            except QuickLogInvalid as exc:
                return self._fail(FailureKind.VALIDATION, "quick_log", exc.errors)
            except RemoteStoreError as exc:
                return self._fail(FailureKind.REMOTE_WRITE, "quick_log", [str(exc)])
            return QuickLogResult(session_count=count, bookkeeping_error=bookkeeping_error)
        finally:
            self._enter(WriteStage.IDLE)

    async def _quick_log_online(
        self,
        profile: ActiveProfile,
        schedules: list[Schedule],
        day: date,
        seed: Optional[str] = None,
    ) -> tuple[int, Optional[str]]:
        """Write remaining slots for `day`.

        Raises QuickLogInvalid before writing anything, or RemoteStoreError
        after rolling back. With a seed, session ids are derived from it and
        the slot, so a retry of the same batch targets the same rows.
        """
        remaining = await self._remaining_slots(profile, schedules, day)
        if not remaining:
            logger.info("Quick-log for pet %s: nothing left to log", profile.pet_id)
            return 0, None

        self._enter(WriteStage.VALIDATING)
        medication, fluid = self._sessions_for(profile, remaining, seed)
        errors = self._validate_generated(medication, fluid)
        if errors:
            raise QuickLogInvalid(errors)

        contributions = (
            [SessionContribution.for_medication(s) for s in medication]
            + [SessionContribution.for_fluid(s) for s in fluid]
        )
        error = await self._write_optimistically(
            self._remote.commit_sessions(
                profile.user_id, profile.pet_id, medication_sessions=medication, fluid_sessions=fluid,
            ),
            lambda: self._cache.apply_quick_log_batch(profile.user_id, profile.pet_id, contributions),
            lambda: self._cache.revert(profile.user_id, profile.pet_id, contributions),
        )
        if error is not None:
            raise RemoteStoreError("quick_log", error)

        bookkeeping_error = await self._after_write(profile, medication + fluid)
        self._enter(WriteStage.ANALYTICS_EMITTING)
        self._analytics.emit(
            events.QUICK_LOG_COMPLETED,
            session_count=len(remaining),
            medication_count=len(medication),
            fluid_count=len(fluid),
        )
        return len(remaining), bookkeeping_error

    @staticmethod
    def _sessions_for(
        profile: ActiveProfile, slots: list[Slot], seed: Optional[str] = None
    ) -> tuple[list[MedicationSession], list[FluidSession]]:
        medication, fluid = [], []
        for slot in slots:
            session_id = slot_session_id(seed, slot.schedule.id, slot.scheduled_time) if seed else None
            if slot.schedule.is_medication:
                medication.append(MedicationSession.from_schedule(
                    slot.schedule, slot.scheduled_time, profile.user_id, profile.pet_id, session_id,
                ))
            else:
                fluid.append(FluidSession.from_schedule(
                    slot.schedule, slot.scheduled_time, profile.user_id, profile.pet_id, session_id,
                ))
        return medication, fluid

    def _validate_generated(self, medication: list[MedicationSession], fluid: list[FluidSession]) -> list[str]:
        """Schedule-derived sessions may sit in a later slot today; only their content is checked."""
        now = self._clock()
        errors = []
        for s in medication:
            errors.extend(validate_medication_session(s, max(now, s.date_time)))
        for s in fluid:
            errors.extend(validate_fluid_session(s, max(now, s.date_time)))
        return errors

    async def _remaining_slots(self, profile: ActiveProfile, schedules: list[Schedule], day: date) -> list[Slot]:
        slots = todays_slots(schedules, datetime.combine(day, datetime.min.time()))
        entry = await self._cache.get(profile.user_id, profile.pet_id)
        if entry is None or not entry.is_valid_for(day):
            return slots
        done = self._completed_slots(entry, slots)
        return [s for s in slots if (s.schedule.id, s.scheduled_time) not in done]

    def _completed_slots(self, entry: DailySummaryCache, slots: list[Slot]) -> set:
        """Each completed time marks the nearest slot of its schedule, if within the window."""
        by_schedule: dict[str, list[Slot]] = defaultdict(list)
        for slot in slots:
            by_schedule[slot.schedule.id].append(slot)

        done = set()
        for group in by_schedule.values():
            schedule = group[0].schedule
            if schedule.is_medication:
                times = entry.completed_times_for(schedule.medication_name or "")
            else:
                times = entry.fluid_times()
            for t in times:
                nearest = min(group, key=lambda s: minutes_between(s.scheduled_time, t))
                if minutes_between(nearest.scheduled_time, t) <= self._duplicate_window:
                    done.add((schedule.id, nearest.scheduled_time))
        return done

    # ------------------------------------------------------------------
    # Cache warming
    # ------------------------------------------------------------------

    async def warm_cache(self, *, profile: Optional[ActiveProfile] = None) -> Optional[DailySummaryCache]:
        """Rebuild today's cache entry from remote state.

        Skipped while offline or while queued writes exist, since those are
        reflected locally but not yet remotely.
        """
        profile = self._resolve_profile(profile)
        if profile is None or not self._connectivity.is_connected:
            return None
        if await self._queue.size() > 0:
            logger.info("Skipping cache warm for pet %s: offline writes pending", profile.pet_id)
            return None

        today = self._clock().date()
        self._reader.invalidate_day(profile.user_id, profile.pet_id, today)
        summary = await self._reader.get_today_summary(profile.user_id, profile.pet_id)

        medication: list[MedicationSession] = []
        fluid: list[FluidSession] = []
        try:
            if summary is not None and summary.has_medication_activity:
                medication = await self._remote.fetch_todays_medication_sessions(
                    profile.user_id, profile.pet_id, self._clock(), limit=_WARM_SESSION_LIMIT,
                )
            if summary is not None and summary.fluid_session_count > 0:
                fluid = await self._remote.fetch_todays_fluid_sessions(
                    profile.user_id, profile.pet_id, self._clock(), limit=_WARM_SESSION_LIMIT,
                )
        except RemoteStoreError as exc:
            # Counts alone still help; missing times push duplicate checks to Tier 3.
            logger.warning("Cache warm could not load today's sessions for pet %s: %s", profile.pet_id, exc)
            self._analytics.emit(events.CACHE_WARM_FAILURE, error=str(exc))

        entry = await self._cache.warm(profile.user_id, profile.pet_id, summary, medication, fluid)
        self._analytics.emit(
            events.CACHE_WARM_SUCCESS,
            medication_sessions=entry.medication_session_count,
            fluid_sessions=entry.fluid_session_count,
        )
        return entry

    async def on_app_start(self, *, profile: Optional[ActiveProfile] = None) -> Optional[DailySummaryCache]:
        await self._cache.clear_expired()
        return await self.warm_cache(profile=profile)

    async def on_resume(self, *, profile: Optional[ActiveProfile] = None) -> Optional[DailySummaryCache]:
        await self._cache.clear_expired()
        return await self.warm_cache(profile=profile)

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    async def replay_operation(self, operation: QueuedOperation) -> None:
        """Write one queued operation. Raises on failure; the queue keeps it."""
        profile = ActiveProfile(operation.user_id, operation.pet_id)
        try:
            if isinstance(operation, CreateMedicationOperation):
                self._note_replay_near_duplicate(operation)
                await self._remote.commit_sessions(
                    profile.user_id, profile.pet_id, medication_sessions=[operation.session],
                )
                await self._after_write(profile, [operation.session])
            elif isinstance(operation, CreateFluidOperation):
                await self._remote.commit_sessions(
                    profile.user_id, profile.pet_id, fluid_sessions=[operation.session],
                )
                await self._after_write(profile, [operation.session])
            elif isinstance(operation, UpdateMedicationOperation):
                await self._remote.update_medication_session(
                    profile.user_id, profile.pet_id, operation.old_session, operation.new_session,
                )
                self._reader.clear_all_caches()
            elif isinstance(operation, UpdateFluidOperation):
                await self._remote.update_fluid_session(
                    profile.user_id, profile.pet_id, operation.old_session, operation.new_session,
                )
                self._reader.clear_all_caches()
            elif isinstance(operation, QuickLogAllOperation):
                await self._quick_log_online(
                    profile, operation.todays_schedules, operation.created_at.date(), seed=operation.id,
                )
            else:
                raise ReplayError(f"Unknown operation type {type(operation).__name__}")
        except QuickLogInvalid as exc:
            raise ReplayError(str(exc)) from exc
        except RemoteStoreError as exc:
            raise ReplayError(exc.message) from exc
        finally:
            self._enter(WriteStage.IDLE)

    def _note_replay_near_duplicate(self, operation: CreateMedicationOperation) -> None:
        """Offline writes skip duplicate detection; record when one looks like a repeat."""
        session = operation.session
        for recent in operation.recent_sessions:
            if minutes_between(recent.effective_time, session.effective_time) <= self._duplicate_window:
                logger.info(
                    "Replaying %s at %s within window of earlier dose at %s",
                    session.medication_name, session.effective_time, recent.effective_time,
                )
                self._analytics.emit(
                    events.OFFLINE_REPLAY_NEAR_DUPLICATE, medication_name=session.medication_name,
                )
                return

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _queue_medication(
        self, profile: ActiveProfile, session: MedicationSession, todays_schedules: list[Schedule]
    ) -> MedicationLogResult:
        self._enter(WriteStage.QUEUING)
        recent = await self._cache.recent_times_for(profile.user_id, profile.pet_id, session.medication_name)
        operation = CreateMedicationOperation(
            user_id=profile.user_id,
            pet_id=profile.pet_id,
            created_at=self._clock(),
            session=session,
            todays_schedules=todays_schedules,
            recent_sessions=[
                RecentSession(medication_name=session.medication_name, effective_time=t) for t in recent
            ],
        )
        contributions = [SessionContribution.for_medication(session)]
        return await self._enqueue_then_apply(
            operation,
            lambda: self._cache.apply_contributions(profile.user_id, profile.pet_id, contributions),
            session.id,
        )

    async def _queue_update(self, operation: QueuedOperation, apply, session_id: str):
        self._enter(WriteStage.QUEUING)
        return await self._enqueue_then_apply(operation, apply, session_id)

    async def _enqueue_then_apply(
        self,
        operation: QueuedOperation,
        apply: Callable[[], Awaitable],
        session_id: str,
    ):
        try:
            result = await self._queue.enqueue(operation)
        except LocalStoreError as exc:
            return self._fail(FailureKind.UNEXPECTED, operation.type, [str(exc)])
        if isinstance(result, RejectedQueueFull):
            logger.warning("Offline %s rejected: queue full", operation.type)
            return LogFailure.of(FailureKind.QUEUE_FULL, detail=result.message, message=result.message)

        self._enter(WriteStage.CACHE_UPDATING)
        await apply()
        warning = result.message if isinstance(result, AcceptedWithWarning) else None
        return LogSuccess(session_id=session_id, queued=True, warning=warning)

    async def _write_optimistically(
        self,
        write: Awaitable,
        apply: Callable[[], Awaitable],
        revert: Callable[[], Awaitable],
    ) -> Optional[str]:
        """Run the remote write while the cache is updated; undo on failure.

        Returns the error text when the write failed, else None.
        """
        self._enter(WriteStage.WRITING)
        pending = asyncio.ensure_future(write)
        self._enter(WriteStage.CACHE_UPDATING)
        try:
            await apply()
        finally:
            error = await self._settle(pending)
        if error is not None:
            await revert()
        return error

    @staticmethod
    async def _settle(pending: asyncio.Future) -> Optional[str]:
        try:
            await pending
        except RemoteStoreError as exc:
            logger.warning("Remote write failed, rolling back cache: %s", exc)
            return str(exc)
        return None

    async def _after_write(self, profile: ActiveProfile, sessions: list) -> Optional[str]:
        """Post-write bookkeeping. Failures here never undo the write."""
        self._reader.clear_all_caches()
        if self._notifications is None:
            return None
        errors = []
        for s in sessions:
            if s.schedule_id is None or s.scheduled_time is None:
                continue
            try:
                await self._notifications.cancel_for_slot(profile.pet_id, s.schedule_id, s.scheduled_time)
            except Exception as exc:
                logger.warning("Could not cancel reminder %s at %s: %s", s.schedule_id, s.scheduled_time, exc)
                errors.append(str(exc))
        return "; ".join(errors) or None

    def _resolve_profile(self, profile: Optional[ActiveProfile]) -> Optional[ActiveProfile]:
        return profile if profile is not None else self._profiles.current()

    def _fail(self, kind: FailureKind, operation: str, errors: Optional[list[str]] = None) -> LogFailure:
        detail = "; ".join(errors) if errors else None
        logger.warning("Logging %s failed (%s): %s", operation, kind.value, detail)
        self._analytics.emit(events.LOGGING_FAILURE, operation=operation, kind=kind.value)
        if kind == FailureKind.VALIDATION and errors:
            return LogFailure.of(kind, detail=detail, message=errors[0])
        return LogFailure.of(kind, detail=detail)

    def _enter(self, stage: WriteStage) -> None:
        if stage != self.stage:
            logger.debug("Write stage %s -> %s", self.stage.value, stage.value)
        self.stage = stage

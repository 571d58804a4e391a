"""
Trip Progress Service (Domain Logic).

Authoritative, persisted stage transitions for a driver's shipment.
Primary write is transactional; everything after it is best-effort.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from freight_tracking.app.core.exceptions import (
    ValidationError, PersistenceError, NotAssignedError, ResourceNotFoundError
)
from freight_tracking.app.domain.trip_progress.status_machine import (
    STAGE_ORDER, STAGE_TIMESTAMP_FIELDS, TransitionReason, next_status, normalize_status,
    stage_index, status_label, validate_transition
)
from freight_tracking.app.models.notification import NotificationType
from freight_tracking.app.models.shipment import Shipment, ShipmentAssignment
from freight_tracking.app.models.trip_enums import TripStage, INACTIVE_ASSIGNMENT_STATUSES
from freight_tracking.app.models.trip_progress import TripProgress, ShipmentStatusHistory
from freight_tracking.app.schemas.trip_progress import AdvanceResult, ProgressEvidence
from freight_tracking.app.services.notification_service import NotificationService
from freight_tracking.app.services.progress_events import publish_progress_changed

logger = logging.getLogger(__name__)

StatusListener = Callable[[int, str, str], Awaitable[None]]

_status_listeners: List[StatusListener] = []


def add_status_listener(listener: StatusListener) -> None:
    """Register ``listener(shipment_id, previous_status, new_status)``."""
    if listener not in _status_listeners:
        _status_listeners.append(listener)


def remove_status_listener(listener: StatusListener) -> None:
    if listener in _status_listeners:
        _status_listeners.remove(listener)


class TripProgressService:

    @staticmethod
    async def advance(
        db: AsyncSession,
        shipment_id: int,
        driver_id: int,
        requested_status: str,
        evidence: Optional[ProgressEvidence] = None,
        redis=None,
    ) -> AdvanceResult:
        """
        Advance a shipment's trip stage.

        Flow:
        1. Load shipment and the driver's live assignment
        2. Resolve current status (progress row, assignment, NEW)
        3. Validate the transition (idempotent requests stop here)
        4. Persist stage timestamp, status, evidence; commit
        5. History row + status sync, invalidation event, shipper
           notification, status listeners (all best-effort)

        Args:
            db: Database session
            shipment_id: Shipment being advanced
            driver_id: Acting driver
            requested_status: Target stage
            evidence: Optional coordinates and notes
            redis: Redis client for invalidation events (optional)

        Returns:
            AdvanceResult

        Raises:
            ResourceNotFoundError: Unknown shipment
            NotAssignedError: Driver not assigned to the shipment
            ValidationError: Regression, skip or unrecognized target
            PersistenceError: Primary write failed
        """
        evidence = evidence or ProgressEvidence()

        # 1-2. Load and resolve
        shipment, assignment, progress = await TripProgressService._load(db, shipment_id, driver_id)
        current = TripProgressService._resolve_current(progress, assignment)
        requested = normalize_status(requested_status)

        # 3. Validate
        check = validate_transition(current, requested)
        if not check.allowed:
            logger.info(
                "Trip stage change rejected",
                extra={
                    "shipment_id": shipment_id,
                    "driver_id": driver_id,
                    "reason": check.reason,
                    "current_status": check.current_status,
                    "requested_status": check.requested_status,
                }
            )
            raise ValidationError(
                check.message,
                details={
                    "reason": check.reason,
                    "current_status": check.current_status,
                    "requested_status": check.requested_status,
                    "expected_status": check.expected_status,
                }
            )

        if check.idempotent:
            return AdvanceResult(
                idempotent=True,
                message=f'Shipment is already "{status_label(current)}"',
                progress_id=progress.id if progress else None,
                previous_status=current,
                new_status=current,
                new_status_label=status_label(current),
                timestamp=datetime.now(timezone.utc),
            )

        # 4. Persist
        now = datetime.now(timezone.utc)
        created = progress is None
        try:
            if created:
                progress = TripProgress(
                    shipment_id=shipment_id,
                    driver_id=driver_id,
                    assignment_id=assignment.id,
                )
                db.add(progress)

            # Every stage up to the requested one has been reached; stamp the unset ones
            for stage in STAGE_ORDER[:stage_index(requested) + 1]:
                field = STAGE_TIMESTAMP_FIELDS.get(stage)
                if field and getattr(progress, field) is None:
                    setattr(progress, field, now)

            progress.current_status = requested
            if evidence.lat is not None and evidence.lng is not None:
                progress.last_lat = evidence.lat
                progress.last_lng = evidence.lng
            if evidence.notes:
                progress.driver_notes = evidence.notes

            await db.commit()
            await db.refresh(progress)
        except IntegrityError as e:
            await db.rollback()
            if not created:
                raise PersistenceError(f"Trip progress write failed: {e}", operation="trip_progress") from e
            # A concurrent first advance inserted the row; re-run against it
            logger.info("Trip progress row for shipment %s created concurrently, retrying", shipment_id)
            return await TripProgressService.advance(
                db, shipment_id, driver_id, requested_status, evidence, redis=redis
            )
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Trip progress write failed for shipment %s: %s", shipment_id, e)
            raise PersistenceError(f"Trip progress write failed: {e}", operation="trip_progress") from e

        logger.info(
            "Trip stage advanced",
            extra={
                "shipment_id": shipment_id,
                "driver_id": driver_id,
                "previous_status": current,
                "new_status": requested,
            }
        )

        # 5. Side effects
        await TripProgressService._record_history(db, shipment_id, driver_id, requested, evidence)
        if redis is not None:
            await publish_progress_changed(redis, shipment_id, driver_id, {
                "shipment_id": shipment_id,
                "driver_id": driver_id,
                "previous_status": current,
                "new_status": requested,
                "timestamp": now.isoformat(),
            })
        await TripProgressService._notify_shipper(db, shipment.shipper_id, shipment_id, requested)
        await TripProgressService._call_listeners(shipment_id, current, requested)

        return AdvanceResult(
            message=f'Status updated to "{status_label(requested)}"',
            progress_id=progress.id,
            previous_status=current,
            new_status=requested,
            new_status_label=status_label(requested),
            timestamp=now,
        )

    @staticmethod
    async def advance_to_next(
        db: AsyncSession,
        shipment_id: int,
        driver_id: int,
        evidence: Optional[ProgressEvidence] = None,
        redis=None,
    ) -> AdvanceResult:
        """Advance to the stage after the current one."""
        _, assignment, progress = await TripProgressService._load(db, shipment_id, driver_id)
        current = TripProgressService._resolve_current(progress, assignment)

        target = next_status(current)
        if target is None:
            raise ValidationError(
                f'No stage after "{status_label(current)}"',
                details={
                    "reason": TransitionReason.UNRECOGNIZED,
                    "current_status": current,
                    "requested_status": None,
                    "expected_status": None,
                }
            )

        return await TripProgressService.advance(db, shipment_id, driver_id, target, evidence, redis=redis)

    @staticmethod
    async def get_progress(db: AsyncSession, shipment_id: int, driver_id: int) -> Tuple[str, Optional[TripProgress]]:
        """
        Returns:
            (current status, progress row or None)
        """
        _, assignment, progress = await TripProgressService._load(db, shipment_id, driver_id)
        return TripProgressService._resolve_current(progress, assignment), progress

    # Internals

    @staticmethod
    async def _load(
        db: AsyncSession, shipment_id: int, driver_id: int
    ) -> Tuple[Shipment, ShipmentAssignment, Optional[TripProgress]]:
        shipment = await db.get(Shipment, shipment_id)
        if not shipment:
            raise ResourceNotFoundError("Shipment", shipment_id)

        result = await db.execute(
            select(ShipmentAssignment).where(
                ShipmentAssignment.shipment_id == shipment_id,
                ShipmentAssignment.driver_id == driver_id,
                ShipmentAssignment.status.notin_(INACTIVE_ASSIGNMENT_STATUSES)
            ).order_by(ShipmentAssignment.id.desc())
        )
        assignment = result.scalars().first()
        if not assignment:
            raise NotAssignedError(shipment_id)

        result = await db.execute(
            select(TripProgress).where(
                TripProgress.shipment_id == shipment_id,
                TripProgress.driver_id == driver_id
            )
        )
        progress = result.scalar_one_or_none()
        return shipment, assignment, progress

    @staticmethod
    def _resolve_current(progress: Optional[TripProgress], assignment: Optional[ShipmentAssignment]) -> str:
        if progress is not None and progress.current_status:
            return normalize_status(progress.current_status)
        if assignment is not None and assignment.status:
            return normalize_status(assignment.status)
        return TripStage.NEW.value

    @staticmethod
    async def _record_history(
        db: AsyncSession, shipment_id: int, driver_id: int, new_status: str, evidence: ProgressEvidence
    ) -> None:
        try:
            db.add(ShipmentStatusHistory(
                shipment_id=shipment_id,
                status=new_status,
                changed_by=driver_id,
                notes=evidence.notes,
                location_lat=evidence.lat,
                location_lng=evidence.lng,
            ))

            shipment = await db.get(Shipment, shipment_id)
            if shipment:
                shipment.status = new_status

            result = await db.execute(
                select(ShipmentAssignment).where(
                    ShipmentAssignment.shipment_id == shipment_id,
                    ShipmentAssignment.driver_id == driver_id,
                    ShipmentAssignment.status.notin_(INACTIVE_ASSIGNMENT_STATUSES)
                )
            )
            for assignment in result.scalars().all():
                assignment.status = new_status

            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.warning("Status history/sync failed for shipment %s", shipment_id, exc_info=True)

    @staticmethod
    async def _notify_shipper(db: AsyncSession, shipper_id: int, shipment_id: int, new_status: str) -> None:
        try:
            await NotificationService.create_notification(
                db,
                user_id=shipper_id,
                title="Shipment update",
                message=f'Shipment #{shipment_id} is now "{status_label(new_status)}"',
                type=NotificationType.TRIP_UPDATE,
                metadata={"shipment_id": shipment_id, "status": new_status},
            )
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.warning("Shipper notification failed for shipment %s", shipment_id, exc_info=True)

    @staticmethod
    async def _call_listeners(shipment_id: int, previous_status: str, new_status: str) -> None:
        for listener in list(_status_listeners):
            try:
                await listener(shipment_id, previous_status, new_status)
            except Exception:
                logger.warning("Status listener failed for shipment %s", shipment_id, exc_info=True)

"""
Shift Service - Online/offline status and work logs
"""
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.exceptions import WorkerNotFoundError
from app.core.logging import get_logger
from app.db.models.delivery_worker import DeliveryWorker, AvailabilityStatus
from app.db.models.work_log import WorkLog
from app.domain.services.alert_service import publish_worker_status
from app.domain.services.earnings_service import EarningsService

logger = get_logger(__name__)


class ShiftService:
    """Starts and ends worker shifts"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_worker(self, worker_id: int) -> DeliveryWorker:
        result = await self.db.execute(
            select(DeliveryWorker)
            .where(DeliveryWorker.id == worker_id, DeliveryWorker.is_deleted.is_(False))
            .execution_options(populate_existing=True)
        )
        worker = result.scalar_one_or_none()
        if not worker:
            raise WorkerNotFoundError(worker_id)
        return worker

    async def _get_open_log(self, worker_id: int) -> Optional[WorkLog]:
        result = await self.db.execute(
            select(WorkLog)
            .where(WorkLog.worker_id == worker_id, WorkLog.check_out.is_(None))
            .order_by(WorkLog.check_in.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def go_online(self, worker_id: int) -> WorkLog:
        """Mark the worker available and open a work log (reusing an open one)"""
        worker = await self._get_worker(worker_id)
        # A worker mid-delivery stays on_delivery until the order completes
        if worker.availability_status != AvailabilityStatus.ON_DELIVERY:
            worker.availability_status = AvailabilityStatus.AVAILABLE

        work_log = await self._get_open_log(worker_id)
        if work_log is None:
            work_log = WorkLog(worker_id=worker_id, check_in=datetime.utcnow())
            self.db.add(work_log)
        await self.db.commit()

        logger.info(
            "Worker online",
            extra_data={"worker_id": worker_id, "work_log_id": work_log.id}
        )
        await publish_worker_status(worker_id, True)
        return work_log

    async def go_offline(self, worker_id: int) -> Optional[WorkLog]:
        """Mark the worker offline and close the open work log, if any"""
        worker = await self._get_worker(worker_id)
        worker.availability_status = AvailabilityStatus.OFFLINE

        work_log = await self._get_open_log(worker_id)
        if work_log is not None:
            work_log.check_out = datetime.utcnow()
            elapsed = work_log.check_out - work_log.check_in
            work_log.total_minutes = max(int(elapsed.total_seconds() // 60), 0)
        await self.db.commit()

        logger.info(
            "Worker offline",
            extra_data={
                "worker_id": worker_id,
                "work_log_id": work_log.id if work_log else None,
                "total_minutes": work_log.total_minutes if work_log else None,
            }
        )
        await publish_worker_status(worker_id, False)
        return work_log

    async def get_work_summary(self, worker_id: int) -> dict:
        await self._get_worker(worker_id)
        return await EarningsService(self.db).get_work_summary(worker_id)

"""
Scheduled tasks: daily maturation, monthly billing and registry export.

Triggered from the admin API or an external scheduler hitting it. A failing
task is recorded in the run result and does not stop the tasks after it.
"""

import logging
import time
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from services.billing_service import run_monthly_billing
from services.corsair_service import batch_result, export_pending_certified_users
from services.wallet_service import process_matured_impacts
from utils.datetime_utils import iso_utc, utc_now

logger = logging.getLogger(__name__)

DAILY_MATURATION = "daily-maturation"
MONTHLY_BILLING = "monthly-billing"
MONTHLY_CORSAIR_EXPORT = "monthly-corsair-export"


async def _run_task(
    sql_session: AsyncSession,
    name: str,
    task: Callable[[AsyncSession], Awaitable[dict]],
) -> dict:
    started_at = iso_utc(utc_now())
    try:
        result = await task(sql_session)
    except Exception as exc:
        await sql_session.rollback()
        logger.exception(f"Cron task {name} failed")
        return {
            "task": name,
            "success": False,
            "started_at": started_at,
            "completed_at": iso_utc(utc_now()),
            "error": str(exc) or exc.__class__.__name__,
        }

    logger.info(f"Cron task {name} completed")
    return {
        "task": name,
        "success": True,
        "started_at": started_at,
        "completed_at": iso_utc(utc_now()),
        "result": result,
    }


async def _corsair_export(sql_session: AsyncSession) -> dict:
    return batch_result(await export_pending_certified_users(sql_session))


async def run_daily_maturation(sql_session: AsyncSession) -> dict:
    return await _run_task(sql_session, DAILY_MATURATION, process_matured_impacts)


async def run_monthly_billing_task(sql_session: AsyncSession) -> dict:
    return await _run_task(sql_session, MONTHLY_BILLING, run_monthly_billing)


async def run_monthly_corsair_export(sql_session: AsyncSession) -> dict:
    return await _run_task(sql_session, MONTHLY_CORSAIR_EXPORT, _corsair_export)


async def _run(sql_session: AsyncSession, kind: str, tasks: list) -> dict:
    run_id = f"{kind}-{int(time.time() * 1000)}"
    started_at = iso_utc(utc_now())

    results = [await task(sql_session) for task in tasks]
    succeeded = sum(1 for result in results if result["success"])

    logger.info(f"Cron run {run_id}: {succeeded}/{len(results)} tasks succeeded")
    return {
        "run_id": run_id,
        "started_at": started_at,
        "completed_at": iso_utc(utc_now()),
        "tasks_run": len(results),
        "tasks_succeeded": succeeded,
        "tasks_failed": len(results) - succeeded,
        "results": results,
    }


async def run_daily_tasks(sql_session: AsyncSession) -> dict:
    return await _run(sql_session, "daily", [run_daily_maturation])


async def run_monthly_tasks(sql_session: AsyncSession) -> dict:
    return await _run(sql_session, "monthly", [run_monthly_billing_task, run_monthly_corsair_export])


async def run_all_tasks(sql_session: AsyncSession) -> dict:
    return await _run(
        sql_session,
        "all",
        [run_daily_maturation, run_monthly_billing_task, run_monthly_corsair_export],
    )

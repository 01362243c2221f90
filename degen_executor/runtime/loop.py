from __future__ import annotations

import asyncio
import logging

from degen_executor.common import guarded_call, log_event, wait_with_stop
from degen_executor.execution import JupiterRoutingClient, LedgerClient, RewardExecutionEngine
from degen_executor.storage import RedisClaimJournal

from .settings import AppSettings


async def bootstrap_dependencies(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    journal: RedisClaimJournal,
    ledger: LedgerClient,
    routing: JupiterRoutingClient,
) -> None:
    while not stop_event.is_set():
        try:
            await journal.connect()
            await ledger.connect()
            await ledger.healthcheck()
            await routing.connect()
            return
        except asyncio.CancelledError:
            raise
        except Exception as error:
            log_event(
                logger,
                level="exception",
                event="bootstrap_error",
                message="Dependency bootstrap failed",
                error=str(error),
            )
            await guarded_call(
                routing.close,
                logger=logger,
                event="bootstrap_routing_close_failed",
                message="Failed to close routing client during bootstrap retry",
            )
            await guarded_call(
                ledger.close,
                logger=logger,
                event="bootstrap_ledger_close_failed",
                message="Failed to close ledger client during bootstrap retry",
            )
            await guarded_call(
                journal.close,
                logger=logger,
                event="bootstrap_journal_close_failed",
                message="Failed to close claim journal during bootstrap retry",
            )
            await wait_with_stop(stop_event, app_settings.error_backoff_seconds)

    raise RuntimeError("Shutdown requested before dependencies were initialized.")


async def run_executor_loop(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    engine: RewardExecutionEngine,
    run_once: bool = False,
) -> bool:
    """Poll for ready claims until stopped. Returns False when the last tick failed."""
    loop = asyncio.get_running_loop()
    next_tick = loop.time()
    interval = app_settings.poll_interval_seconds
    tick_ok = True

    while not stop_event.is_set():
        try:
            await engine.run_tick(stop_event)
            tick_ok = True
        except asyncio.CancelledError:
            raise
        except Exception as error:
            tick_ok = False
            log_event(
                logger,
                level="exception",
                event="main_loop_error",
                message="Executor tick failed",
                error=str(error),
                error_type=type(error).__name__,
            )

        if run_once:
            log_event(
                logger,
                level="info",
                event="single_tick_completed",
                message="Single-shot run finished",
                success=tick_ok,
            )
            return tick_ok

        next_tick += interval
        now = loop.time()
        if next_tick <= now:
            missed_cycles = int((now - next_tick) / interval) + 1
            next_tick += missed_cycles * interval

        delay_seconds = max(0.0, next_tick - now)
        if not tick_ok:
            delay_seconds = max(delay_seconds, app_settings.error_backoff_seconds)

        await wait_with_stop(stop_event, delay_seconds)

    return tick_ok

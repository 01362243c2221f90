from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
import sys

from dotenv import load_dotenv

from degen_executor import __version__
from degen_executor.common import guarded_call, log_event
from degen_executor.execution import JupiterRoutingClient, LedgerClient, RewardExecutionEngine
from degen_executor.runtime import (
    AppSettings,
    ConfigurationError,
    bootstrap_dependencies,
    run_executor_loop,
    setup_logger,
)
from degen_executor.storage import RedisClaimJournal, StorageSettings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Degen-mode reward execution service.")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single polling tick and exit (same as DEGEN_EXECUTOR_ONCE=1).",
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    logger = setup_logger()

    try:
        app_settings = AppSettings.from_env()
        app_settings.validate()
        signer = app_settings.load_signer()
        pool = app_settings.load_pool()
        storage_settings = StorageSettings.from_env()
    except ConfigurationError as error:
        log_event(
            logger,
            level="error",
            event="startup_config_error",
            message="Invalid startup configuration",
            error=str(error),
        )
        return 1

    run_once = args.once or app_settings.run_once
    journal = RedisClaimJournal(storage_settings, logger)
    ledger = LedgerClient(
        logger=logger,
        rpc_url=app_settings.rpc_url,
        request_timeout_seconds=app_settings.rpc_timeout_seconds,
        max_retries=app_settings.rpc_max_retries,
    )
    routing = JupiterRoutingClient(
        logger=logger,
        api_base_url=app_settings.jupiter_api_base,
        api_key=app_settings.jupiter_api_key,
        timeout_seconds=app_settings.routing_timeout_seconds,
        max_retries=app_settings.routing_max_retries,
    )
    engine = RewardExecutionEngine(
        logger=logger,
        app_settings=app_settings,
        ledger=ledger,
        routing=routing,
        signer=signer,
        pool=pool,
        journal=journal,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(sig: signal.Signals) -> None:
        log_event(
            logger,
            level="info",
            event="shutdown_signal_received",
            message="Shutdown signal received",
            signal=sig.name,
        )
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown, sig)

    log_event(
        logger,
        level="info",
        event="executor_starting",
        message="Degen executor starting",
        version=__version__,
        network=app_settings.network,
        program_id=app_settings.program_id,
        executor=str(signer.pubkey()),
        pool_version=pool.version,
        pool_snapshot=pool.snapshot,
        pool_size=len(pool),
        slippage_bps_sequence=list(app_settings.slippage_bps_sequence),
        max_accounts_sequence=list(app_settings.max_accounts_sequence),
        run_once=run_once,
        journal_enabled=journal.enabled,
    )

    exit_code = 0
    try:
        await bootstrap_dependencies(
            logger=logger,
            stop_event=stop_event,
            app_settings=app_settings,
            journal=journal,
            ledger=ledger,
            routing=routing,
        )
        await guarded_call(
            engine.prepare,
            logger=logger,
            event="executor_prepare_failed",
            message="Executor settlement account check failed; attempts will create it",
        )
        succeeded = await run_executor_loop(
            logger=logger,
            stop_event=stop_event,
            app_settings=app_settings,
            engine=engine,
            run_once=run_once,
        )
        if run_once and not succeeded:
            exit_code = 1
    except RuntimeError as error:
        if not stop_event.is_set():
            raise
        log_event(
            logger,
            level="warning",
            event="startup_aborted",
            message="Executor stopped before startup completed",
            error=str(error),
        )
    finally:
        await guarded_call(
            routing.close,
            logger=logger,
            event="shutdown_routing_close_failed",
            message="Failed to close routing client",
        )
        await guarded_call(
            ledger.close,
            logger=logger,
            event="shutdown_ledger_close_failed",
            message="Failed to close ledger client",
        )
        await guarded_call(
            journal.close,
            logger=logger,
            event="shutdown_journal_close_failed",
            message="Failed to close claim journal",
        )
        log_event(logger, level="info", event="shutdown_completed", message="Shutdown completed")

    return exit_code


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

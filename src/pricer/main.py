# src/pricer/main.py
import os
import asyncio
import structlog
from dotenv import load_dotenv

from pricer.config import (
    ResetDefaults,
    env_bool,
    env_float,
    pricing_config_from_env,
    validate_environment,
)
from pricer.errors import ConfigError
from pricer.engine.decision import PricingDecisionEngine
from pricer.engine.oracle import LLMOracle, build_oracle
from pricer.ingest.commands import stdin_loop
from pricer.publish.formatting import format_price_pretty
from pricer.publish.notifiers import ConsoleNotifier
from pricer.publish.stream import InMemoryPriceStream, RedisPriceStream
from pricer.service import PricingService
from pricer.signals.evaluator import SignificanceEvaluator
from pricer.signals.reconciler import PeriodicReconciler, ReconcilerConfig
from pricer.signals.router import SignalRouter
from pricer.state.signal_store import SignalStore

# Redis backend (optional, STATE_BACKEND=redis)
from storage.redis_state import RedisStateStore

# Telegram notifier (optional)
from pricer.notify.telegram import TelegramNotifier, config_from_env as telegram_config_from_env

load_dotenv()
log = structlog.get_logger()


# ---------------------------
# Subscribers
# ---------------------------

async def printer_loop(q, console: ConsoleNotifier):
    """Print every published price record as it arrives. Toggle with PRINT_PRICES=1."""
    while True:
        rec = await q.get()
        await console.send(rec)


# ---------------------------
# Main
# ---------------------------

async def main():
    for warning in validate_environment():
        log.warning("env_validation", detail=warning)

    pricing_cfg = pricing_config_from_env()
    tz_name = os.getenv("DISPLAY_TZ", "UTC")

    # State + publication backends
    backend = os.getenv("STATE_BACKEND", "memory").lower()
    redis_state = None
    if backend == "redis":
        REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        redis_state = RedisStateStore.from_url(REDIS_URL)
        store = SignalStore(redis_state)
        # one client for state and the price stream
        publisher = RedisPriceStream(redis_state.r, group_id=pricing_cfg.group_id)
    else:
        store = SignalStore()
        publisher = InMemoryPriceStream(group_id=pricing_cfg.group_id)

    # Oracle: "llm" (default) or "rules"
    oracle = build_oracle(os.getenv("PRICING_ORACLE", "llm"), pricing_cfg)

    engine = PricingDecisionEngine(store, oracle, publisher, cfg=pricing_cfg)
    evaluator = SignificanceEvaluator(store, manual_freshness_s=env_float("MANUAL_FRESHNESS_S", 120.0))
    router = SignalRouter(store, evaluator, engine)
    service = PricingService(store, router, publisher, cfg=pricing_cfg, reset_defaults=ResetDefaults())
    reconciler = PeriodicReconciler(
        store,
        router,
        ReconcilerConfig(
            interval_s=env_float("TICK_INTERVAL_S", 60.0),
            window_s=env_float("VIEW_WINDOW_S", 60.0),
            min_views_for_surge=int(env_float("MIN_VIEWS_FOR_SURGE", 5)),
        ),
    )

    # ----- Subscribers -----
    tasks = []
    if env_bool("READ_STDIN", False):
        tasks.append(asyncio.create_task(stdin_loop(service, reconciler), name="stdin-commands"))
    if env_bool("PRINT_PRICES", True):
        console = ConsoleNotifier(format_fn=lambda r: format_price_pretty(r, tz_name))
        tasks.append(asyncio.create_task(printer_loop(publisher.subscribe(), console), name="price-printer"))

    tg_notifier = None
    try:
        tg_cfg = telegram_config_from_env()
        tg_notifier = TelegramNotifier(cfg=tg_cfg, records_queue=publisher.subscribe(),
                                       format_fn=lambda r: format_price_pretty(r, tz_name))
        log.info("telegram_enabled")
    except ConfigError:
        log.info("telegram_disabled_missing_env")

    if isinstance(oracle, LLMOracle):
        await oracle.start()
    await service.start()
    await reconciler.start()
    if tg_notifier is not None:
        await tg_notifier.start()
    log.info("pricer_started", oracle=oracle.name, backend=backend, base_price=pricing_cfg.base_price)

    try:
        # either loop only returns by raising (ConfigError stops the pipeline)
        await asyncio.gather(service.wait(), reconciler.wait(), *tasks)
    finally:
        for t in tasks:
            t.cancel()
        await reconciler.stop()
        await service.stop()
        if tg_notifier is not None:
            await tg_notifier.stop()
        if isinstance(oracle, LLMOracle):
            await oracle.stop()
        if redis_state is not None:
            await redis_state.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass

"""Spend Notifier — Main Orchestrator.

Ties the components together: config, device store, registry, alert
dispatcher, health monitor and metrics. External collaborators (cost
source, publish destination, push gateway, metrics sink) are injected by
the deploying application.

Runs on a schedule with APScheduler:
  - Alert cycle   (every N minutes): snapshot → threshold → dispatch
  - Health cycle  (every M minutes): credential, certificate, feedback

Usage:
    app = SpendNotifier(config, cost_source, destination, gateway=gateway)
    run(app)
"""

from __future__ import annotations

import asyncio
import signal
import time
import traceback
from typing import Any, Awaitable, Callable, Optional, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from spend_notifier.config import AppConfig
from spend_notifier.devices.gateway import (
    FeedbackSource,
    GatewayFeedbackSource,
    PushGateway,
)
from spend_notifier.devices.registry import DeviceRegistry
from spend_notifier.devices.store import DeviceStore
from spend_notifier.health import PushHealthMonitor
from spend_notifier.models import CostSnapshot, DeliveryOutcome, HealthReport
from spend_notifier.notifier.destination import PublishDestination
from spend_notifier.notifier.dispatcher import AlertDispatcher
from spend_notifier.notifier.formatters import (
    compute_alert_context,
    rank_top_services,
)
from spend_notifier.utils.logger import get_logger, set_console_level
from spend_notifier.utils.metrics import MetricsCollector, MetricsSink

logger = get_logger(__name__)


class CostSource(Protocol):
    """Supplies the current billing snapshot."""

    async def get_snapshot(self) -> CostSnapshot:
        ...


class SpendNotifier:
    """Main application orchestrator.

    Each cycle is independent. A failing cycle is logged and counted,
    never raised, so the scheduler keeps running.

    Attributes:
        config: Full application configuration.
        store: Device token store.
        registry: Device registry.
        dispatcher: Alert dispatcher.
        monitor: Push health monitor, None when no gateway is configured.
    """

    def __init__(
        self,
        config: AppConfig,
        cost_source: CostSource,
        destination: PublishDestination,
        gateway: Optional[PushGateway] = None,
        feedback: Optional[FeedbackSource] = None,
        metrics_sink: Optional[MetricsSink] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.cost_source = cost_source
        self.metrics = MetricsCollector(metrics_sink, config.metrics_namespace)
        policy = config.retry.to_policy()

        self.store = DeviceStore(config.database_path)
        self.dispatcher = AlertDispatcher(destination, self.metrics, policy, sleep)

        self.registry: Optional[DeviceRegistry] = None
        self.monitor: Optional[PushHealthMonitor] = None
        if gateway is not None:
            self.registry = DeviceRegistry(gateway, self.store, policy, sleep)
            self.monitor = PushHealthMonitor(
                self.registry,
                gateway,
                feedback or GatewayFeedbackSource(gateway),
                self.metrics,
                config.health,
            )

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._alert_lock = asyncio.Lock()
        self._cycle_count = 0
        self._errors_count = 0

    # ── Lifecycle ─────────────────────────────────────────

    async def start(self) -> None:
        """Open the store and schedule the alert and health cycles."""
        set_console_level(self.config.log_level)

        logger.info("═══ Initializing device store ═══")
        await self.store.initialize()

        logger.info("═══ Setting up scheduler ═══")
        self._scheduler = AsyncIOScheduler()

        alert_minutes = self.config.alert_interval_minutes
        self._scheduler.add_job(
            self.run_alert_cycle,
            IntervalTrigger(minutes=alert_minutes),
            id="alert_cycle",
            max_instances=1,
            misfire_grace_time=60,
            name=f"Alert cycle (every {alert_minutes}m)",
        )

        jobs = 1
        if self.monitor is not None:
            health_minutes = self.config.health.interval_minutes
            self._scheduler.add_job(
                self.run_health_cycle,
                IntervalTrigger(minutes=health_minutes),
                id="health_cycle",
                max_instances=1,
                misfire_grace_time=60,
                name=f"Push health cycle (every {health_minutes}m)",
            )
            jobs += 1

        self._scheduler.start()
        self._running = True
        logger.info("Scheduler started with %d jobs", jobs)

    async def stop(self) -> None:
        """Graceful shutdown: stop the scheduler, close the store."""
        logger.info("═══ Shutting down ═══")
        self._running = False

        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

        await self.store.close()
        logger.info("Shutdown complete")

    async def run_forever(self) -> None:
        """Start, run the first alert cycle, then idle until stopped."""
        try:
            await self.start()
            logger.info("═══ Running first alert cycle ═══")
            await self.run_alert_cycle()
            while self._running:
                await asyncio.sleep(1)
        finally:
            await self.stop()

    # ── Cycles ────────────────────────────────────────────

    async def run_alert_cycle(self) -> Optional[DeliveryOutcome]:
        """Fetch a snapshot and alert if it breaches the threshold.

        Returns:
            The delivery outcome, or None when no alert was sent (within
            budget, overlapping cycle, or any failure).
        """
        if self._alert_lock.locked():
            logger.warning("Previous alert cycle still running, skipping")
            return None

        async with self._alert_lock:
            self._cycle_count += 1
            timer = self.metrics.timer("AlertCycle")
            alert = self.config.alert

            try:
                snapshot = await self.cost_source.get_snapshot()
                logger.info(
                    "Alert cycle #%d: total=%s %s threshold=%s",
                    self._cycle_count, snapshot.total_cost,
                    snapshot.currency, alert.threshold,
                )

                if snapshot.total_cost <= alert.threshold:
                    logger.info("Spend within budget, no alert")
                    await timer.stop(True)
                    return None

                top = rank_top_services(
                    snapshot, alert.top_service_limit, alert.min_service_cost,
                )
                context = compute_alert_context(snapshot, alert.threshold, top)
                await self.metrics.record_threshold_breach(
                    float(snapshot.total_cost),
                    float(alert.threshold),
                    float(context.exceed_amount),
                )

                push_config = self.config.push if self.config.push.enabled else None
                outcome = await self.dispatcher.dispatch(
                    snapshot, context, alert.topic_arn, push_config,
                )
                await timer.stop(outcome.success)
                return outcome

            except Exception as e:
                self._errors_count += 1
                logger.error("Alert cycle #%d failed: %s", self._cycle_count, e)
                logger.debug(traceback.format_exc())
                await timer.stop(False)
                return None

    async def run_health_cycle(self) -> Optional[HealthReport]:
        """Run one push health cycle; None when push is not configured."""
        if self.monitor is None:
            logger.debug("Health cycle skipped (no push gateway)")
            return None
        try:
            return await self.monitor.run_cycle()
        except Exception as e:
            self._errors_count += 1
            logger.error("Health cycle failed: %s", e)
            return None

    async def send_test_alert(self) -> DeliveryOutcome:
        """Send the sample alert to the configured topic."""
        push_config = self.config.push if self.config.push.enabled else None
        return await self.dispatcher.send_test_alert(
            self.config.alert.topic_arn, push_config,
        )

    # ── Public state accessors ────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def errors_count(self) -> int:
        return self._errors_count


def run(app: SpendNotifier) -> None:
    """Run an assembled notifier until SIGINT/SIGTERM."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    start = time.monotonic()

    def _signal_handler(sig, frame):
        logger.info("Signal %s received, shutting down...", sig)
        app._running = False

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        loop.run_until_complete(app.run_forever())
    except KeyboardInterrupt:
        pass
    finally:
        loop.close()
        logger.info("Ran for %.0fs", time.monotonic() - start)

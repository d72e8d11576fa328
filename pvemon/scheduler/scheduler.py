"""
Scheduler Module

This module drives the periodic alert checks: metric collection, threshold
evaluation, workload transition detection and history cleanup, in that order.

Ticks never overlap. A tick that comes due while another one (or the initial
run) is still in progress is dropped; the work only ever looks at the latest
values, so the next tick catches up.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Callable
import logging
import os
import threading

from pvemon.cluster import NodeStatusSource, ProxmoxClient, load_node_configs
from pvemon.metrics import MetricCollector, MetricStorage, CollectionResult
from pvemon.alerts import (
    AlertEvent,
    CooldownTracker,
    Notifier,
    ThresholdEvaluator,
    TransitionEvent,
    WorkloadTransitionDetector
)
from pvemon.config import load_settings
from pvemon.storage import AlertLog, ConfigStore, ThresholdStore

logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL = '*/5 * * * *'


@dataclass
class TickResult:
    """What one tick did."""
    collection: CollectionResult = field(default_factory=CollectionResult)
    alerts: List[AlertEvent] = field(default_factory=list)
    transitions: List[TransitionEvent] = field(default_factory=list)
    points_removed: int = 0
    failed_steps: List[str] = field(default_factory=list)


class CollectionScheduler:
    """Scheduler for periodic metric collection and alert evaluation."""

    def __init__(self,
                 collector: MetricCollector,
                 evaluator: ThresholdEvaluator,
                 detector: WorkloadTransitionDetector,
                 alert_log: Optional[AlertLog] = None,
                 check_interval: str = DEFAULT_CHECK_INTERVAL,
                 retention_days: int = 7,
                 initial_delay_seconds: float = 5,
                 initial_timeout_seconds: float = 30,
                 scheduler: Optional[BackgroundScheduler] = None):
        self.collector = collector
        self.evaluator = evaluator
        self.detector = detector
        self.alert_log = alert_log
        self.check_interval = check_interval
        self.retention_days = retention_days
        self.initial_delay_seconds = initial_delay_seconds
        self.initial_timeout_seconds = initial_timeout_seconds

        self._scheduler = scheduler or BackgroundScheduler()
        self._running = False
        self._tick_lock = threading.Lock()
        self._callbacks: List[Callable[[TickResult], Any]] = []
        self.last_node_errors: Dict[str, str] = {}
        self.last_tick_at: Optional[datetime] = None

    def add_collection_callback(self, callback: Callable[[TickResult], Any]) -> None:
        """Add a callback to be called after each tick."""
        self._callbacks.append(callback)

    def start(self) -> None:
        """Start the periodic job and schedule the delayed initial run."""
        if self._running:
            return

        self._scheduler.add_job(
            self.run_tick,
            trigger=CronTrigger.from_crontab(self.check_interval),
            id='alert_checks',
            name='Alert Checks Job',
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.add_job(
            self.run_initial,
            trigger=DateTrigger(run_date=datetime.now() + timedelta(seconds=self.initial_delay_seconds)),
            id='initial_collection',
            name='Initial Collection Job',
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True
        logger.info(f"Alert system started (interval: {self.check_interval})")

    def stop(self) -> None:
        """Stop the scheduler. A tick in flight is left to finish on its own."""
        if not self._running:
            return

        self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Collection scheduler stopped")

    def is_running(self) -> bool:
        """Check if the scheduler is running."""
        return self._running

    def trigger_collection(self) -> Optional[TickResult]:
        """Manually trigger a tick."""
        return self.run_tick()

    def run_tick(self) -> Optional[TickResult]:
        """Run collect, evaluate, detect and cleanup. Returns None if the tick was dropped."""
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous check still running, skipping this tick")
            return None
        try:
            logger.info("Running checks...")
            result = self._run_steps(cleanup=True)
        finally:
            self._tick_lock.release()

        for callback in self._callbacks:
            try:
                callback(result)
            except Exception as e:
                logger.error(f"Callback execution failed: {e}")

        return result

    def run_initial(self) -> Optional[TickResult]:
        """
        Best-effort first collection shortly after startup.

        Runs collect, evaluate and detect within ``initial_timeout_seconds``.
        A timeout or failure is logged and never reaches the periodic job.
        """
        logger.info("Initial data collection...")
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='initial-collection')
        future = executor.submit(self._run_initial_steps)
        try:
            result = future.result(timeout=self.initial_timeout_seconds)
        except FutureTimeoutError:
            logger.error(f"Initial data collection failed: timed out after {self.initial_timeout_seconds}s")
            logger.info("Will retry on next scheduled check")
            return None
        except Exception as e:
            logger.error(f"Initial data collection failed: {e}")
            logger.info("Will retry on next scheduled check")
            return None
        finally:
            executor.shutdown(wait=False)

        if result is not None:
            logger.info("Initial data collection complete")
        return result

    def _run_initial_steps(self) -> Optional[TickResult]:
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("A check is already running, skipping initial collection")
            return None
        try:
            return self._run_steps(cleanup=False)
        finally:
            self._tick_lock.release()

    def _run_steps(self, cleanup: bool) -> TickResult:
        result = TickResult()

        try:
            result.collection = self.collector.collect()
        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            result.failed_steps.append('collect')
        self.last_node_errors = dict(result.collection.errors)

        try:
            result.alerts = self.evaluator.evaluate(result.collection.statuses)
        except Exception as e:
            logger.error(f"Error checking thresholds: {e}")
            result.failed_steps.append('evaluate')

        try:
            result.transitions = self.detector.check()
        except Exception as e:
            logger.error(f"Error checking VM status: {e}")
            result.failed_steps.append('detect')

        if cleanup:
            try:
                result.points_removed = self.collector.cleanup(self.retention_days)
                if self.alert_log is not None:
                    self.alert_log.trim()
            except Exception as e:
                logger.error(f"Error cleaning up history: {e}")
                result.failed_steps.append('cleanup')

        self.last_tick_at = datetime.utcnow()
        logger.info(
            f"Checks completed: {len(result.collection.statuses)} nodes, "
            f"{len(result.alerts)} alerts, {len(result.transitions)} transitions"
        )
        return result


def create_alert_system(settings: Dict[str, Any],
                        source: Optional[NodeStatusSource] = None,
                        notifier: Optional[Notifier] = None,
                        scheduler: Optional[BackgroundScheduler] = None) -> CollectionScheduler:
    """Wire the stores, node source, evaluator and detector from settings."""
    storage_cfg = settings['storage']
    collection_cfg = settings['collection']
    alerts_cfg = settings['alerts']
    data_dir = storage_cfg['data_dir']

    if source is None:
        source = ProxmoxClient(
            load_node_configs(settings.get('nodes')),
            timeout=collection_cfg['request_timeout_seconds']
        )
    if notifier is None:
        notifier = Notifier.from_webhook_url(alerts_cfg.get('discord_webhook_url'))

    metric_storage = MetricStorage(base_dir=os.path.join(data_dir, 'metrics'))
    threshold_store = ThresholdStore(os.path.join(data_dir, 'thresholds.json'))
    alert_log = AlertLog(os.path.join(data_dir, 'alert_history.json'),
                         max_entries=storage_cfg['alert_history_limit'])
    config_store = ConfigStore(os.path.join(data_dir, 'config.json'))

    cooldowns = CooldownTracker(window=timedelta(minutes=alerts_cfg['cooldown_minutes']))

    return CollectionScheduler(
        collector=MetricCollector(source, metric_storage),
        evaluator=ThresholdEvaluator(threshold_store, alert_log, notifier, cooldowns),
        detector=WorkloadTransitionDetector(source, config_store, notifier),
        alert_log=alert_log,
        check_interval=collection_cfg['check_interval'],
        retention_days=storage_cfg['retention_days'],
        initial_delay_seconds=collection_cfg['initial_delay_seconds'],
        initial_timeout_seconds=collection_cfg['initial_timeout_seconds'],
        scheduler=scheduler
    )


def start_alert_system(config_path: str = 'config/settings.yaml',
                       settings: Optional[Dict[str, Any]] = None,
                       source: Optional[NodeStatusSource] = None,
                       notifier: Optional[Notifier] = None) -> CollectionScheduler:
    """Build the alert system from settings and start the periodic checks."""
    if settings is None:
        settings = load_settings(config_path)

    alert_system = create_alert_system(settings, source=source, notifier=notifier)

    if not settings['alerts'].get('discord_webhook_url'):
        logger.warning("DISCORD_WEBHOOK_URL not set, alerts disabled")

    node_names = alert_system.collector.source.get_node_names()
    if not node_names:
        logger.warning("No Proxmox nodes configured")
    logger.info(f"Monitoring nodes: {', '.join(node_names)}")

    alert_system.start()
    return alert_system

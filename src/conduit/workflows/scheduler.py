"""Cron-driven SCHEDULE triggers.

At each :meth:`WorkflowScheduler.tick` every active SCHEDULE workflow whose
cron expression (evaluated with croniter in the trigger's timezone) has an
occurrence in ``(last_tick, now]`` is dispatched once, no matter how many
occurrences were missed.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from croniter import croniter
from opentelemetry import trace

from conduit.storage.base import WorkflowRepository
from conduit.workflows.dispatcher import TriggerDispatcher
from conduit.workflows.models import ScheduleTrigger, WorkflowDefinition

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("conduit.workflows")

DEFAULT_TICK_SECONDS = 60.0


def next_occurrence(cron: str, timezone: str, after: datetime) -> datetime:
    """First cron occurrence strictly after *after*, as an aware UTC datetime."""
    anchor = after.astimezone(ZoneInfo(timezone))
    return croniter(cron, anchor).get_next(datetime).astimezone(UTC)


def is_due(trigger: ScheduleTrigger, last_tick: datetime, now: datetime) -> bool:
    schedule = trigger.schedule
    return next_occurrence(schedule.cron, schedule.timezone, last_tick) <= now


class WorkflowScheduler:
    def __init__(
        self,
        workflows: WorkflowRepository,
        dispatcher: TriggerDispatcher,
        *,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        started_at: datetime | None = None,
    ) -> None:
        self._workflows = workflows
        self._dispatcher = dispatcher
        self._tick_seconds = tick_seconds
        self._last_tick = started_at or datetime.now(UTC)
        self._stopping = asyncio.Event()

    @property
    def last_tick(self) -> datetime:
        return self._last_tick

    async def tick(self, now: datetime | None = None) -> list[WorkflowDefinition]:
        """Dispatch due SCHEDULE workflows and return them."""
        now = now or datetime.now(UTC)
        with tracer.start_as_current_span("conduit.scheduler.tick") as span:
            due: list[WorkflowDefinition] = []
            for workflow in await self._workflows.list_active_workflows():
                trigger = workflow.trigger
                if not isinstance(trigger, ScheduleTrigger):
                    continue
                if is_due(trigger, self._last_tick, now):
                    due.append(workflow)
            span.set_attribute("workflows_due", len(due))

            if due:
                logger.info("Scheduler tick: %d workflow(s) due", len(due))
                self._dispatcher.dispatch_schedule(
                    due, {"scheduledAt": now.isoformat(), "trigger": "SCHEDULE"}
                )
            self._last_tick = now
        return due

    async def run_forever(self) -> None:
        """Tick every ``tick_seconds`` until :meth:`stop` is called."""
        self._stopping.clear()
        logger.info("Workflow scheduler started (every %.0fs)", self._tick_seconds)
        while not self._stopping.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._tick_seconds)
            except TimeoutError:
                continue
        logger.info("Workflow scheduler stopped")

    def stop(self) -> None:
        self._stopping.set()

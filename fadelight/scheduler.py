"""Per-channel fade timers.

`FadeScheduler` receives input records, keeps one `Channel` per topic in a
`ChannelRegistry` and runs one repeating asyncio task per active channel.
Each tick calls the pure `engine.evaluate()` and applies the context it
returns.  Output records are handed to an injected ``send`` coroutine.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterator, Mapping, Optional

from .brain import describe
from .const import DEFAULT_STEP_INTERVAL_MS, DEFAULT_STEP_TRANSITION_MS, DEFAULT_TOPIC
from .diagnostics import Report, Severity, Status
from .engine import EvaluationContext, evaluate, setup, start
from .suntimes import NamedInstantProvider
from .validate import Activation, parse_activation

logger = logging.getLogger(__name__)

SendCallback = Callable[[Dict[str, Any]], Awaitable[None]]
StatusCallback = Callable[[str, Status], None]
Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Aware wall clock in the system time zone."""
    return datetime.now().astimezone()


@dataclass
class Channel:
    """State owned by one timer slot."""
    key: str
    context: Optional[EvaluationContext] = None
    task: Optional[asyncio.Task] = None
    status: Status = field(default_factory=Status.clear)

    @property
    def active(self) -> bool:
        return self.task is not None and not self.task.done()


class ChannelRegistry:
    """Channels by timer key plus the enabled flag of every topic seen."""

    def __init__(self) -> None:
        self._channels: Dict[str, Channel] = {}
        self._enabled: Dict[str, bool] = {}

    def get(self, key: str) -> Optional[Channel]:
        return self._channels.get(key)

    def get_or_create(self, key: str) -> Channel:
        channel = self._channels.get(key)
        if channel is None:
            channel = Channel(key=key)
            self._channels[key] = channel
        return channel

    def remove(self, key: str) -> Optional[Channel]:
        return self._channels.pop(key, None)

    def __iter__(self) -> Iterator[Channel]:
        return iter(list(self._channels.values()))

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, key: str) -> bool:
        return key in self._channels

    def is_enabled(self, topic: str) -> bool:
        """Enabled flag for *topic*, defaulting to (and remembering) True."""
        return self._enabled.setdefault(topic, True)

    def set_enabled(self, topic: str, enabled: bool) -> bool:
        """Store the flag; returns True if it changed an existing value."""
        previous = self._enabled.get(topic)
        self._enabled[topic] = enabled
        return previous is not None and previous != enabled

    def enabled_flags(self) -> Dict[str, bool]:
        return dict(self._enabled)


class FadeScheduler:
    """Dispatches input records and drives the repeating fade ticks."""

    def __init__(
        self,
        send: SendCallback,
        provider: NamedInstantProvider,
        clock: Clock = local_now,
        step_interval_ms: int = DEFAULT_STEP_INTERVAL_MS,
        step_transition_ms: int = DEFAULT_STEP_TRANSITION_MS,
        per_topic: bool = True,
        status_callback: Optional[StatusCallback] = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            send: Coroutine receiving every output record.
            provider: Named instant provider, e.g. a bound `get_named_instants`.
            clock: Returns the current aware datetime.
            step_interval_ms: Delay between recurring ticks.
            step_transition_ms: Transition time attached to recurring output.
            per_topic: If False all topics share a single timer.
            status_callback: Optional sink for status updates.
        """
        self.send = send
        self.provider = provider
        self.clock = clock
        self.step_interval = step_interval_ms / 1000
        self.transition = step_transition_ms / 1000
        self.per_topic = per_topic
        self.status_callback = status_callback
        self.registry = ChannelRegistry()

    @classmethod
    def from_options(
        cls,
        options: Mapping[str, Any],
        send: SendCallback,
        provider: NamedInstantProvider,
        clock: Clock = local_now,
        status_callback: Optional[StatusCallback] = None,
    ) -> "FadeScheduler":
        return cls(
            send,
            provider,
            clock=clock,
            step_interval_ms=options.get("step_interval_ms", DEFAULT_STEP_INTERVAL_MS),
            step_transition_ms=options.get("step_transition_ms", DEFAULT_STEP_TRANSITION_MS),
            per_topic=options.get("per_topic", True),
            status_callback=status_callback,
        )

    def timer_key(self, topic: str) -> str:
        return topic if self.per_topic else DEFAULT_TOPIC

    # ------------------------------------------------------------------
    # Status reporting
    # ------------------------------------------------------------------

    def _report(self, key: str, report: Report) -> None:
        """Log a report and forward its status to the sink."""
        if report.error is not None:
            logger.error(f"[{key}] {report.error.message}")
        for issue in report.warnings:
            logger.warning(f"[{key}] {issue.message}")

        status = report.status
        channel = self.registry.get(key)
        if channel is not None:
            channel.status = status
        if status.text is not None:
            if status.severity is Severity.ERROR:
                log = logger.error
            elif status.severity is Severity.WARNING:
                log = logger.warning
            else:
                log = logger.info
            log(f"[{key}] status: {status.text}")
        if self.status_callback is not None:
            self.status_callback(key, status)

    # ------------------------------------------------------------------
    # Input handling
    # ------------------------------------------------------------------

    async def handle(self, record: Mapping[str, Any]) -> Report:
        """Process one input record.

        * no service: pass the record through, timers untouched
        * "turn_on", "on" or True: validate, emit once and start the timer
        * anything else: pass the record through and stop the timer
        """
        activation = parse_activation(record)
        self._update_enabled(activation)

        if activation.activate is None:
            await self.send(dict(record))
            report = Report()
        elif activation.activate:
            report = await self._activate(activation, record)
        else:
            await self.send(dict(record))
            await self.stop(activation.topic)
            report = Report()

        self._report(self.timer_key(activation.topic), report)
        return report

    def _update_enabled(self, activation: Activation) -> None:
        topic = activation.topic
        if activation.enabled is None:
            self.registry.is_enabled(topic)
            return

        if self.registry.set_enabled(topic, activation.enabled):
            logger.info(f"[{topic}] Fading {'enabled' if activation.enabled else 'disabled'}")
        for channel in self.registry:
            if channel.context is not None and channel.context.topic == topic:
                channel.context = replace(channel.context, enabled=activation.enabled)

    async def _activate(self, activation: Activation, record: Mapping[str, Any]) -> Report:
        topic = activation.topic
        clock_now = self.clock()
        context, report = setup(
            record,
            topic,
            clock_now,
            self.provider,
            enabled=self.registry.is_enabled(topic),
        )
        if context is None:
            return report

        evaluation = start(context, clock_now)
        if evaluation.report.error is not None:
            return report.fail(evaluation.report.error)

        key = self.timer_key(topic)
        await self._cancel(key)

        channel = self.registry.get_or_create(key)
        channel.context = evaluation.context
        if evaluation.output is not None:
            await self.send(evaluation.output)

        channel.task = asyncio.create_task(self._run(key))
        logger.info(f"[{key}] Started fade timer (every {self.step_interval:g}s)")
        return report

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def tick(self, key: str) -> Report:
        """Run one recurring evaluation for the channel at *key*."""
        channel = self.registry.get(key)
        if channel is None or channel.context is None:
            return Report()

        evaluation = evaluate(channel.context, self.clock(), self.provider, self.transition)
        channel.context = evaluation.context
        if evaluation.report.error is not None:
            logger.error(f"[{key}] Unexpected error in background process")
            self._report(key, evaluation.report)
        if evaluation.output is not None:
            logger.info(f"[{key}] {' '.join(describe(evaluation.context.last_data))}")
            await self.send(evaluation.output)
        return evaluation.report

    async def _run(self, key: str) -> None:
        """Repeat `tick` until cancelled."""
        while True:
            try:
                await asyncio.sleep(self.step_interval)
                await self.tick(key)
            except asyncio.CancelledError:
                logger.info(f"[{key}] Fade timer cancelled")
                break
            except Exception as e:
                logger.error(f"[{key}] Error in fade timer: {e}")

    async def _cancel(self, key: str) -> None:
        channel = self.registry.get(key)
        if channel is None or channel.task is None:
            return
        task, channel.task = channel.task, None
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def stop(self, topic: str) -> None:
        """Cancel the timer serving *topic* and forget its context."""
        key = self.timer_key(topic)
        await self._cancel(key)
        if self.registry.remove(key) is not None:
            logger.info(f"[{key}] Stopped fade timer")

    async def shutdown(self) -> None:
        """Cancel every timer."""
        for channel in self.registry:
            await self._cancel(channel.key)
            self.registry.remove(channel.key)
        logger.info("All fade timers stopped")

    def snapshot(self) -> Dict[str, Any]:
        """Per-channel state for the web UI."""
        channels = {}
        for channel in self.registry:
            context = channel.context
            channels[channel.key] = {
                "active": channel.active,
                "topic": context.topic if context else None,
                "enabled": context.enabled if context else None,
                "last_data": context.last_data if context else None,
                "window": {
                    "before": context.closest_before.time,
                    "before_time": context.closest_before.before_time.isoformat(),
                    "after": context.closest_after.time,
                    "after_time": context.closest_after.after_time.isoformat(),
                } if context and context.closest_before and context.closest_after else None,
                "status": {"severity": channel.status.severity.value, "text": channel.status.text},
            }
        return {"channels": channels, "enabled": self.registry.enabled_flags()}

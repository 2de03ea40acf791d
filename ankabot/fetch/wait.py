"""
Page settle protocol.

Drives a live page through

    START -> AWAITING_READY_STATE -> AWAITING_NETWORK_IDLE -> AWAITING_SELECTOR -> SETTLED
                     |                        |                       |
                     +------------------------+-----------------------+--> TIMED_OUT

Every phase gets min(remaining overall budget, phase budget). The overall
deadline is checked on entry to each configured phase, so a slow phase
shrinks what is left for the next one. Waiting is done by polling with asyncio.sleep, never
sleeping past the deadline, so the run is cancellable at every suspension
point and always terminates by max_wait_ms.

A timeout is an outcome, not an error: the caller captures whatever the page
looks like at that point.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, ClassVar, Dict, Optional, Set, TypeVar

from ankabot.core.config import settings
from ankabot.errors import WaitStateError
from ankabot.fetch.base import PageHandle
from ankabot.schemas import ReadyState, WaitConfig, WaitOutcome, WaitState

logger = logging.getLogger(__name__)

T = TypeVar("T")

_READY_TARGETS = {
    ReadyState.INTERACTIVE: {"interactive", "complete"},
    ReadyState.COMPLETE: {"complete"},
}


class _ProbeTimeout(Exception):
    pass


class WaitProtocol:
    VALID_TRANSITIONS: ClassVar[Dict[WaitState, Set[WaitState]]] = {
        WaitState.START: {WaitState.AWAITING_READY_STATE},
        WaitState.AWAITING_READY_STATE: {WaitState.AWAITING_NETWORK_IDLE, WaitState.TIMED_OUT},
        WaitState.AWAITING_NETWORK_IDLE: {WaitState.AWAITING_SELECTOR, WaitState.TIMED_OUT},
        WaitState.AWAITING_SELECTOR: {WaitState.SETTLED, WaitState.TIMED_OUT},
        WaitState.SETTLED: set(),
        WaitState.TIMED_OUT: set(),
    }

    PHASES = (
        WaitState.AWAITING_READY_STATE,
        WaitState.AWAITING_NETWORK_IDLE,
        WaitState.AWAITING_SELECTOR,
    )

    def __init__(
        self,
        config: WaitConfig,
        phase_budgets_ms: Optional[Dict[WaitState, int]] = None,
        network_poll_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.phase_budgets_ms = dict(phase_budgets_ms or {})
        self.network_poll_ms = network_poll_ms if network_poll_ms is not None else settings.NETWORK_POLL_MS
        self._clock = clock
        self._sleep = sleep
        self._state = WaitState.START

    @property
    def state(self) -> WaitState:
        return self._state

    def _transition(self, to_state: WaitState) -> None:
        if to_state not in self.VALID_TRANSITIONS[self._state]:
            raise WaitStateError(self._state, to_state)
        logger.debug("wait: %s -> %s", self._state.value, to_state.value)
        self._state = to_state

    async def run(self, page: PageHandle) -> WaitOutcome:
        if self._state != WaitState.START:
            raise WaitStateError(self._state, WaitState.AWAITING_READY_STATE)

        started = self._clock()
        deadline = started + self.config.max_wait_ms / 1000.0
        phases: Dict[str, int] = {}
        timed_out_in: Optional[WaitState] = None

        handlers = {
            WaitState.AWAITING_READY_STATE: self._await_ready_state,
            WaitState.AWAITING_NETWORK_IDLE: self._await_network_idle,
            WaitState.AWAITING_SELECTOR: self._await_selector,
        }

        try:
            for phase in self.PHASES:
                self._transition(phase)
                phase_started = self._clock()
                if not self._configured(phase):
                    # nothing to wait for, so the deadline cannot be missed here
                    phases[phase.value] = 0
                    continue
                if phase_started >= deadline:
                    timed_out_in = phase
                    phases[phase.value] = 0
                    break

                phase_deadline = deadline
                budget = self.phase_budgets_ms.get(phase)
                if budget is not None:
                    phase_deadline = min(deadline, phase_started + budget / 1000.0)

                satisfied = await handlers[phase](page, phase_deadline)
                phases[phase.value] = self._ms(self._clock() - phase_started)
                if not satisfied:
                    timed_out_in = phase
                    break
        except asyncio.CancelledError:
            logger.info("wait cancelled in %s", self._state.value)
            raise

        elapsed = self._ms(self._clock() - started)
        if timed_out_in is not None:
            self._transition(WaitState.TIMED_OUT)
            logger.info("wait timed out in %s after %d ms", timed_out_in.value, elapsed)
        else:
            self._transition(WaitState.SETTLED)
            logger.info("page settled after %d ms", elapsed)

        return WaitOutcome(state=self._state, timed_out_in=timed_out_in, elapsed_ms=elapsed, phases=phases)

    def _configured(self, phase: WaitState) -> bool:
        if phase == WaitState.AWAITING_READY_STATE:
            return self.config.ready_state != ReadyState.NONE
        if phase == WaitState.AWAITING_SELECTOR:
            return bool(self.config.selector)
        return True

    async def _await_ready_state(self, page: PageHandle, deadline: float) -> bool:
        if self.config.ready_state == ReadyState.NONE:
            return True
        targets = _READY_TARGETS[self.config.ready_state]
        while True:
            try:
                current = await self._probe(page.ready_state(), deadline)
            except _ProbeTimeout:
                return False
            if current in targets:
                return True
            if not await self._pause(self.network_poll_ms / 1000.0, deadline):
                return False

    async def _await_network_idle(self, page: PageHandle, deadline: float) -> bool:
        idle_for = self.config.network_idle_ms / 1000.0
        last_counter = page.request_counter()
        quiet_since: Optional[float] = None

        while True:
            now = self._clock()
            counter = page.request_counter()
            if counter != last_counter:
                # a new request restarts the idle timer
                last_counter = counter
                quiet_since = None
            if page.inflight_requests() > 0:
                quiet_since = None
            elif quiet_since is None:
                quiet_since = now

            if quiet_since is not None and now - quiet_since >= idle_for:
                return True
            if now >= deadline:
                return False

            step = self.network_poll_ms / 1000.0
            if quiet_since is not None:
                step = min(step, quiet_since + idle_for - now)
            await self._sleep(max(0.0, min(step, deadline - now)))

    async def _await_selector(self, page: PageHandle, deadline: float) -> bool:
        selector = self.config.selector
        if not selector:
            return True
        while True:
            try:
                found = await self._probe(page.has_selector(selector), deadline)
            except _ProbeTimeout:
                return False
            if found:
                logger.debug("selector %r present", selector)
                return True
            if not await self._pause(self.config.selector_poll_ms / 1000.0, deadline):
                return False

    async def _pause(self, interval: float, deadline: float) -> bool:
        """Sleep up to interval without crossing deadline. False once the deadline has passed."""
        remaining = deadline - self._clock()
        if remaining <= 0:
            return False
        await self._sleep(min(interval, remaining))
        return True

    async def _probe(self, coro: Awaitable[T], deadline: float) -> T:
        # a page query that hangs must not outlive the deadline
        remaining = deadline - self._clock()
        if remaining <= 0:
            if asyncio.iscoroutine(coro):
                coro.close()
            raise _ProbeTimeout()
        try:
            return await asyncio.wait_for(coro, timeout=remaining)
        except asyncio.TimeoutError:
            raise _ProbeTimeout()

    @staticmethod
    def _ms(seconds: float) -> int:
        return int(round(seconds * 1000))


async def wait_until_settled(page: PageHandle, config: WaitConfig, **kwargs) -> WaitOutcome:
    """Run a fresh protocol instance against page."""
    return await WaitProtocol(config, **kwargs).run(page)

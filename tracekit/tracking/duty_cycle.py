"""Motion-driven duty cycle between low-power and high-resolution sampling.

The controller watches motion classifications and decides when to pay for
continuous GPS.  A transition is only committed once the new classification
has persisted for ``required_motion_seconds``; any flip before that cancels
the pending transition and the controller stays in its committed state.

States::

    IDLE ──moving──▶ DEBOUNCING_UP ──timer──▶ ACTIVE
      ▲                   │                     │
      └────stationary─────┘                 stationary
      ▲                                         ▼
      └───────timer──────── DEBOUNCING_DOWN ◀───┘
                                 │ moving
                                 └──────▶ ACTIVE

With ``required_motion_seconds == 0`` the debouncing states are skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from tracekit.errors import PermissionRevoked
from tracekit.status import StatusBoard
from tracekit.sync.timers import TimerRegistry
from tracekit.tracking.base import MotionType, PositionMode, PositionSource
from tracekit.tracking.config_loader import TrackingConfig, get_tracking_config

logger = logging.getLogger("tracekit.tracking.duty_cycle")

DEBOUNCE_TIMER = "duty_cycle.debounce"


class DutyState(str, Enum):
    IDLE = "idle"
    DEBOUNCING_UP = "debouncing_up"
    ACTIVE = "active"
    DEBOUNCING_DOWN = "debouncing_down"


@dataclass(frozen=True)
class DutyTransition:
    """A committed mode transition.

    Attributes:
        previous: Committed state before the transition.
        state:    Committed state after the transition (IDLE or ACTIVE).
        motion:   Classification that triggered it.
        at:       Timer-clock time of the commit.
        waited:   Seconds spent debouncing (0 for immediate switches).
    """

    previous: DutyState
    state: DutyState
    motion: MotionType
    at: float
    waited: float = 0.0


TransitionListener = Callable[[DutyTransition], None]


class DutyCycleController:
    """Debounced state machine driving the PositionSource mode.

    Not thread-safe: call it only from the ingestion lane.
    """

    def __init__(
        self,
        position_source: PositionSource,
        timers: TimerRegistry,
        config: TrackingConfig | None = None,
        status: StatusBoard | None = None,
    ) -> None:
        self._source = position_source
        self._timers = timers
        self._config = config or get_tracking_config()
        self._status = status or StatusBoard()
        self._required = self._config.duty_cycle.required_motion_seconds

        self._state = DutyState.IDLE
        self._motion: MotionType | None = MotionType.STATIONARY
        self._debounce_started: float | None = None
        self._halted = False
        self._listeners: list[TransitionListener] = []

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> DutyState:
        return self._state

    @property
    def current_motion(self) -> MotionType | None:
        return self._motion

    @property
    def halted(self) -> bool:
        return self._halted

    @property
    def required_motion_seconds(self) -> float:
        return self._required

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def set_required_motion_seconds(self, seconds: float) -> None:
        """Change the debounce threshold.  A pending debounce keeps its deadline."""
        if seconds < 0:
            raise ValueError("required_motion_seconds must be >= 0")
        self._required = float(seconds)
        logger.info("Required motion seconds set to %.1f", self._required)

    def apply_config(self, config: TrackingConfig) -> None:
        """Adopt a reloaded tracking config (moving set and threshold)."""
        self._config = config
        self.set_required_motion_seconds(config.duty_cycle.required_motion_seconds)

    def start(self) -> None:
        """Enter IDLE and put the position source into low-power mode."""
        self._state = DutyState.IDLE
        if self._switch(PositionMode.SIGNIFICANT_CHANGE):
            logger.info("Started with significant location changes")
        self._publish()

    def stop(self) -> None:
        self._cancel_debounce()

    def on_motion(self, motion: str | MotionType) -> None:
        """Handle one motion classification from the MotionSource."""
        motion = MotionType.parse(motion)
        if self._halted:
            logger.debug("Controller halted, ignoring %s", motion.value)
            return
        # Only a change of classification is an event.
        if motion == self._motion:
            return
        self._motion = motion
        self._status.update(current_motion=motion.value)

        if self._config.is_moving(motion):
            self._on_moving(motion)
        else:
            self._on_stationary(motion)
        self._publish()

    def halt(self, reason: str) -> None:
        """Stop reacting to motion, e.g. after location permission was revoked."""
        self._cancel_debounce()
        self._halted = True
        logger.error("Duty cycle halted: %s", reason)
        self._status.update(permission_error=reason, is_tracking=False)

    def resume(self) -> None:
        """Clear a halt and restart from IDLE in low-power mode."""
        if not self._halted:
            return
        self._halted = False
        self._motion = None
        self._status.update(permission_error=None)
        logger.info("Duty cycle resumed")
        self.start()

    # ------------------------------------------------------------------
    # Transition rules
    # ------------------------------------------------------------------

    def _on_moving(self, motion: MotionType) -> None:
        if self._state is DutyState.ACTIVE:
            return
        if self._state is DutyState.DEBOUNCING_DOWN:
            self._cancel_debounce()
            self._state = DutyState.ACTIVE
            logger.info("Motion resumed (%s), staying in continuous updates", motion.value)
            return

        if self._required == 0:
            self._cancel_debounce()
            self._commit(DutyState.ACTIVE, motion)
            return

        self._arm_debounce(DutyState.ACTIVE, motion)
        self._state = DutyState.DEBOUNCING_UP
        logger.info(
            "Motion detected (%s), waiting %ds before tracking",
            motion.value, int(self._required),
        )

    def _on_stationary(self, motion: MotionType) -> None:
        if self._state is DutyState.IDLE:
            return
        if self._state is DutyState.DEBOUNCING_UP:
            self._cancel_debounce()
            self._state = DutyState.IDLE
            logger.info("Motion not sustained (%s), staying in significant changes", motion.value)
            return

        if self._required == 0:
            self._cancel_debounce()
            self._commit(DutyState.IDLE, motion)
            return

        self._arm_debounce(DutyState.IDLE, motion)
        self._state = DutyState.DEBOUNCING_DOWN
        logger.info("Stationary detected, waiting %ds before stopping", int(self._required))

    def _arm_debounce(self, target: DutyState, motion: MotionType) -> None:
        self._debounce_started = self._timers.now()
        self._timers.arm(
            DEBOUNCE_TIMER,
            self._required,
            lambda: self._on_debounce_elapsed(target, motion),
        )

    def _on_debounce_elapsed(self, target: DutyState, motion: MotionType) -> None:
        if self._halted:
            return
        self._commit(target, motion)
        self._publish()

    def _cancel_debounce(self) -> None:
        self._timers.cancel(DEBOUNCE_TIMER)
        self._debounce_started = None

    def _commit(self, target: DutyState, motion: MotionType) -> None:
        now = self._timers.now()
        waited = now - self._debounce_started if self._debounce_started is not None else 0.0
        self._debounce_started = None
        self._timers.cancel(DEBOUNCE_TIMER)

        mode = (
            PositionMode.CONTINUOUS if target is DutyState.ACTIVE
            else PositionMode.SIGNIFICANT_CHANGE
        )
        previous = (
            DutyState.IDLE if self._state in (DutyState.IDLE, DutyState.DEBOUNCING_UP)
            else DutyState.ACTIVE
        )
        if not self._switch(mode) and self._halted:
            return
        self._state = target

        if target is DutyState.ACTIVE:
            logger.info(
                "Motion (%s) sustained for %ds, starting continuous updates",
                motion.value, int(waited),
            )
        else:
            logger.info(
                "Stationary sustained for %ds, switching to significant changes", int(waited)
            )

        transition = DutyTransition(
            previous=previous, state=target, motion=motion, at=now, waited=waited
        )
        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception as exc:
                logger.warning("Transition listener failed: %s", exc)

    def _switch(self, mode: PositionMode) -> bool:
        """Put the source into ``mode``.  Returns True if a switch was issued."""
        if self._source.mode == mode:
            return False
        try:
            self._source.set_mode(mode)
        except PermissionRevoked as exc:
            self.halt(str(exc) or "Location permission revoked")
            return False
        return True

    def _publish(self) -> None:
        self._status.update(
            duty_state=self._state.value,
            is_tracking=self._source.mode == PositionMode.CONTINUOUS,
        )

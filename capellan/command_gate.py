"""
Admission gate for expensive AI commands.

Checks run in a fixed order under one lock so two requests can never both
pass:
    1. the caller has no task running
    2. nobody else has a task running (only one AI operation system-wide)
    3. the caller is within the rate limit (privileged callers skip this)
    4. the slot is acquired

Rejections are returned as GateDecision values with a user-facing message;
they are never raised.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from capellan.models.command import CommandContext, CommandType
from capellan.rate_limiter import RateLimiter
from capellan.task_registry import AcquireReason, AITask, TaskRegistry

logger = logging.getLogger(__name__)

USER_BUSY_MESSAGE = "⏳ *Ya tienes una consulta al Capellán en curso. Espera a que termine antes de hacer otra.*"
SYSTEM_BUSY_MESSAGE = "🔄 *El Capellán está ocupado atendiendo a {username}. Espera tu turno, hermano.*"
RATE_LIMITED_MESSAGE = "⏰ *Debes esperar {seconds} segundos antes de hacer otra consulta costosa al Capellán.*"


class GateReason(Enum):
    USER_BUSY = "user_busy"
    SYSTEM_BUSY = "system_busy"
    RATE_LIMITED = "rate_limited"


@dataclass
class GateDecision:
    allowed: bool
    reason: Optional[GateReason] = None
    message: Optional[str] = None
    retry_after: Optional[int] = None
    holder: Optional[AITask] = None

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "retry_after": self.retry_after,
            "holder": self.holder.username if self.holder else None,
        }


@dataclass
class GatedCall:
    """Result of CommandGate.run; `value` is None when the call was rejected."""
    decision: GateDecision
    value: Any = None

    @property
    def allowed(self) -> bool:
        return self.decision.allowed


def _busy_decision(reason: AcquireReason, holder: Optional[AITask]) -> GateDecision:
    if reason == AcquireReason.USER_BUSY:
        return GateDecision(False, GateReason.USER_BUSY, USER_BUSY_MESSAGE, holder=holder)
    username = holder.username if holder else "otro hermano"
    return GateDecision(
        False,
        GateReason.SYSTEM_BUSY,
        SYSTEM_BUSY_MESSAGE.format(username=username),
        holder=holder,
    )


class CommandGate:
    def __init__(self, registry: TaskRegistry, rate_limiter: RateLimiter):
        self.registry = registry
        self.rate_limiter = rate_limiter
        self._lock = threading.Lock()

    def try_enter(self, context: CommandContext, command: Union[CommandType, str]) -> GateDecision:
        """Admit the caller or explain why not. On admission the caller must `leave`."""
        command_name = command.value if isinstance(command, CommandType) else str(command)

        with self._lock:
            own = self.registry.get_active_task(context.user_id)
            if own is not None:
                decision = _busy_decision(AcquireReason.USER_BUSY, own)
            else:
                active = self.registry.get_active_tasks()
                if active:
                    decision = _busy_decision(AcquireReason.SYSTEM_BUSY, active[0])
                elif not context.is_privileged and not self.rate_limiter.allow(context.user_id):
                    seconds = self.rate_limiter.remaining_seconds(context.user_id)
                    decision = GateDecision(
                        False,
                        GateReason.RATE_LIMITED,
                        RATE_LIMITED_MESSAGE.format(seconds=seconds),
                        retry_after=seconds,
                    )
                else:
                    result = self.registry.acquire(
                        context.user_id, context.username, command_name, context.channel_id
                    )
                    if result.acquired:
                        decision = GateDecision(True)
                    else:
                        decision = _busy_decision(result.reason, result.holder)

        if decision.allowed:
            logger.info(f"[GATE] Admitted {command_name} for {context.username} ({context.user_id})")
        else:
            logger.info(
                f"[GATE] Rejected {command_name} for {context.username} ({context.user_id}): "
                f"{decision.reason.value}"
            )
        return decision

    def leave(self, user_id: str):
        self.registry.release(user_id)

    async def run(
        self,
        context: CommandContext,
        command: Union[CommandType, str],
        operation: Callable[[], Awaitable[Any]],
    ) -> GatedCall:
        """Run `operation` inside the gate, releasing the slot however it ends.

        Exceptions from the operation propagate after the slot is released.
        """
        decision = self.try_enter(context, command)
        if not decision.allowed:
            return GatedCall(decision)

        try:
            value = await operation()
        finally:
            self.leave(context.user_id)
        return GatedCall(decision, value)

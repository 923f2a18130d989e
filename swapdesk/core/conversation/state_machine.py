"""
Conversation State Machine

One live interaction state per user, persisted through the AccountStore.
Every write replaces the previous state and restarts the expiry window; a
state past its expiry is treated as absent and removed on read.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Union

from ...config import settings
from ...providers.base import AccountStore
from .models import (
    PAYLOAD_TYPES,
    ConversationState,
    ConversationStateName,
    IdlePayload,
    StatePayload,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_S = ConversationStateName

# Starting a new flow (asset or amount step) is allowed from anywhere: a later
# interaction supersedes whatever was pending.
TRANSITIONS: Dict[ConversationStateName, FrozenSet[ConversationStateName]] = {
    _S.IDLE: frozenset({_S.AWAITING_ASSET_INPUT, _S.AWAITING_AMOUNT_INPUT}),
    _S.AWAITING_ASSET_INPUT: frozenset({_S.AWAITING_ASSET_INPUT, _S.AWAITING_AMOUNT_INPUT, _S.IDLE}),
    _S.AWAITING_AMOUNT_INPUT: frozenset({
        _S.AWAITING_ASSET_INPUT,
        _S.AWAITING_AMOUNT_INPUT,
        _S.CONFIRMING,
        _S.EXECUTING,
        _S.IDLE,
    }),
    _S.CONFIRMING: frozenset({_S.AWAITING_ASSET_INPUT, _S.AWAITING_AMOUNT_INPUT, _S.EXECUTING, _S.IDLE}),
    _S.EXECUTING: frozenset({_S.AWAITING_ASSET_INPUT, _S.AWAITING_AMOUNT_INPUT, _S.IDLE}),
}


class ConversationError(Exception):
    """Base class for state machine misuse."""


class InvalidTransitionError(ConversationError):
    def __init__(self, from_state: ConversationStateName, to_state: ConversationStateName):
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")
        self.from_state = from_state
        self.to_state = to_state


class PayloadMismatchError(ConversationError):
    def __init__(self, name: ConversationStateName, payload: Any):
        expected = PAYLOAD_TYPES[name].__name__
        super().__init__(f"State {name.value} expects {expected}, got {type(payload).__name__}")
        self.name = name
        self.payload = payload


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_expiry(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ConversationStateMachine:
    """Persists and validates the per-user conversation state."""

    def __init__(
        self,
        account_store: AccountStore,
        ttl_seconds: Optional[int] = None,
        clock: Optional[Clock] = None,
    ):
        self.account_store = account_store
        self.ttl = timedelta(seconds=ttl_seconds or settings.conversation_ttl_seconds)
        self.clock = clock or _utcnow

    async def set_state(
        self,
        user_id: Any,
        name: Union[ConversationStateName, str],
        payload: StatePayload,
    ) -> ConversationState:
        """Overwrite the user's state and restart its expiry window.

        Setting ``IDLE`` removes the stored record.
        """
        state_name = ConversationStateName(name)
        if not isinstance(payload, PAYLOAD_TYPES[state_name]):
            raise PayloadMismatchError(state_name, payload)

        state = ConversationState(
            user_id=user_id,
            name=state_name,
            payload=payload,
            expires_at=self.clock() + self.ttl,
        )
        if state_name == _S.IDLE:
            await self.clear_state(user_id)
            return state

        await self.account_store.set_state(user_id, state_name.value, state.to_record())
        logger.debug(f"Conversation state for user {user_id} -> {state_name.value}")
        return state

    async def get_state(self, user_id: Any) -> Optional[ConversationState]:
        """Return the live state, or None if absent, expired or unreadable."""
        try:
            record = await self.account_store.get_state(user_id)
        except Exception as exc:
            logger.error(f"Failed to read conversation state for user {user_id}: {exc}")
            return None

        if not record or not record.get("state"):
            return None

        state = self._from_record(user_id, record)
        if state is None:
            return None

        if state.is_expired(self.clock()):
            logger.info(f"Conversation state {state.name.value} expired for user {user_id}")
            await self._clear_quietly(user_id)
            return None
        return state

    async def clear_state(self, user_id: Any) -> None:
        await self.account_store.clear_state(user_id)

    async def transition(
        self,
        user_id: Any,
        to_state: Union[ConversationStateName, str],
        payload: StatePayload,
        current: Optional[ConversationState] = None,
    ) -> ConversationState:
        """Move to ``to_state`` if the transition table allows it from the current state."""
        target = ConversationStateName(to_state)
        if current is None:
            current = await self.get_state(user_id)
        source = current.name if current else _S.IDLE

        if target not in TRANSITIONS[source]:
            raise InvalidTransitionError(source, target)
        return await self.set_state(user_id, target, payload)

    async def reset(self, user_id: Any) -> ConversationState:
        return await self.set_state(user_id, _S.IDLE, IdlePayload())

    def _from_record(self, user_id: Any, record: Mapping[str, Any]) -> Optional[ConversationState]:
        try:
            name = ConversationStateName(record["state"])
            stored = record.get("data") or {}
            expires_at = _parse_expiry(stored.get("expiresAt"))
            if expires_at is None:
                raise ValueError("missing expiresAt")
            payload = PAYLOAD_TYPES[name].from_dict(stored.get("data") or {})
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            # Records written by other clients or older versions
            logger.warning(f"Discarding unreadable conversation state for user {user_id}: {exc}")
            return None
        return ConversationState(user_id=user_id, name=name, payload=payload, expires_at=expires_at)

    async def _clear_quietly(self, user_id: Any) -> None:
        try:
            await self.clear_state(user_id)
        except Exception as exc:
            logger.warning(f"Failed to clear expired conversation state for user {user_id}: {exc}")

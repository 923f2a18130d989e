"""
Conversation Module

Per-user multi-step trade interaction: state models, the persisted state
machine and the buy/sell flow built on top of it.
"""

from .flow import FlowOutcome, FlowStatus, TradeConversation
from .models import (
    AwaitingAmountPayload,
    AwaitingAssetPayload,
    ConfirmingPayload,
    ConversationState,
    ConversationStateName,
    ExecutingPayload,
    FlowPresets,
    IdlePayload,
)
from .state_machine import (
    TRANSITIONS,
    ConversationError,
    ConversationStateMachine,
    InvalidTransitionError,
    PayloadMismatchError,
)

__all__ = [
    # State machine
    "ConversationStateMachine",
    "TRANSITIONS",
    "ConversationError",
    "InvalidTransitionError",
    "PayloadMismatchError",
    # Flow
    "FlowOutcome",
    "FlowStatus",
    "TradeConversation",
    # Models
    "AwaitingAmountPayload",
    "AwaitingAssetPayload",
    "ConfirmingPayload",
    "ConversationState",
    "ConversationStateName",
    "ExecutingPayload",
    "FlowPresets",
    "IdlePayload",
]

# Services - Engine Logic Layer
"""
Rientro Services Module.

This module provides the engine logic for:
- Escalation evaluation and the periodic sweep
- Notification dispatch and push delivery
- Trip lifecycle hooks and traveler actions
- Retention cleanup
"""

# Escalation Evaluation
from .evaluator import (
    EscalationThresholds,
    EscalationDecision,
    evaluate,
    minutes_since,
    whole_minutes_between,
)

# Push Delivery
from .push import (
    PushMessage,
    PushTransport,
    FcmPushTransport,
    LoggingPushTransport,
    build_fcm_message,
    build_push_transport,
)

# Notification Dispatch
from .notifications import (
    AlertMessage,
    AlertTemplates,
    DeliveryStatus,
    DispatchResult,
    NotificationDispatcher,
    RecipientOutcome,
)

# Sweep, Hooks, Retention, Actions
from .sweep import EscalationSweeper, SweepReport, TripSweepOutcome
from .lifecycle import HookResult, TripLifecycleHooks
from .retention import RetentionReport, RetentionSweeper
from .trip_actions import TripActions

# Wiring
from .engine import RientroEngine, get_engine


__all__ = [
    # Evaluation
    "EscalationThresholds",
    "EscalationDecision",
    "evaluate",
    "minutes_since",
    "whole_minutes_between",
    # Push
    "PushMessage",
    "PushTransport",
    "FcmPushTransport",
    "LoggingPushTransport",
    "build_fcm_message",
    "build_push_transport",
    # Dispatch
    "AlertMessage",
    "AlertTemplates",
    "DeliveryStatus",
    "DispatchResult",
    "NotificationDispatcher",
    "RecipientOutcome",
    # Handlers
    "EscalationSweeper",
    "SweepReport",
    "TripSweepOutcome",
    "HookResult",
    "TripLifecycleHooks",
    "RetentionReport",
    "RetentionSweeper",
    "TripActions",
    # Wiring
    "RientroEngine",
    "get_engine",
]

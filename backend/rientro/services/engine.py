"""
Engine wiring: builds every service from settings with shared dependencies.

The HTTP layer and the scheduler both go through `get_engine()`, so a single
store client and push transport serve the whole process.
"""
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from rientro.core.config import Settings, settings as default_settings
from rientro.core.database import SupabaseTripStore, TripStore, get_supabase_client

from .evaluator import EscalationThresholds
from .lifecycle import TripLifecycleHooks
from .notifications import NotificationDispatcher
from .push import PushTransport, build_push_transport
from .retention import RetentionSweeper
from .sweep import EscalationSweeper
from .trip_actions import TripActions


logger = logging.getLogger(__name__)


@dataclass
class RientroEngine:
    store: TripStore
    transport: PushTransport
    dispatcher: NotificationDispatcher
    sweeper: EscalationSweeper
    hooks: TripLifecycleHooks
    retention: RetentionSweeper
    actions: TripActions

    @classmethod
    def build(
        cls,
        settings: Settings,
        store: Optional[TripStore] = None,
        transport: Optional[PushTransport] = None
    ) -> "RientroEngine":
        """Assemble the engine; `store` and `transport` may be injected."""
        store = store or SupabaseTripStore(get_supabase_client())
        transport = transport or build_push_transport(settings)

        dispatcher = NotificationDispatcher(
            store,
            transport,
            max_concurrency=settings.dispatch_max_concurrency,
            store_timeout=settings.store_call_timeout_seconds,
            push_timeout=settings.push_call_timeout_seconds,
        )
        thresholds = EscalationThresholds.from_settings(settings)
        logger.info(
            f"Escalation thresholds: soft={thresholds.soft_after}m "
            f"urgent={thresholds.urgent_after}m emergency={thresholds.emergency_after}m"
        )

        return cls(
            store=store,
            transport=transport,
            dispatcher=dispatcher,
            sweeper=EscalationSweeper(
                store,
                dispatcher,
                thresholds=thresholds,
                max_concurrency=settings.sweep_max_concurrency,
                store_timeout=settings.store_call_timeout_seconds,
            ),
            hooks=TripLifecycleHooks(
                store, dispatcher, store_timeout=settings.store_call_timeout_seconds
            ),
            retention=RetentionSweeper(
                store,
                retention_days=settings.retention_days,
                store_timeout=settings.store_call_timeout_seconds,
            ),
            actions=TripActions(store, store_timeout=settings.store_call_timeout_seconds),
        )

    async def aclose(self) -> None:
        await self.transport.aclose()


@lru_cache
def get_engine() -> RientroEngine:
    """Get the process-wide engine built from settings."""
    return RientroEngine.build(default_settings)

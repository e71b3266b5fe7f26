"""
Subscription Reconciler

After checkout, the payment webhook updates the subscribers row some time
after the user is redirected back. The reconciler polls that row until the
app's view of the tier catches up.

STATE MACHINE (one per session):
    IDLE --refresh()--> FETCHING --> SETTLED --refresh()--> FETCHING ...

RULES:
- One fetch in flight at a time; a refresh() during a fetch is dropped
- A non-forced refresh() within min_refresh_interval of the previous
  fetch's start is dropped (focus, visibility and interval triggers all
  share this limiter)
- A forced refresh() skips the limiter, waits forced_refresh_delay for the
  webhook to land, and starts with a fresh retry count
- Each failed primary read counts one retry; while under max_retries the
  fallback status read is tried. Exhausting retries settles on the
  least-privileged default, marked degraded
- A fetch always runs to completion; there is no cancellation

DESIGN DECISION: All mutable state lives on the instance, in ReconcilerState.
Two reconcilers never share a flag or a timestamp.
"""

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Optional
from uuid import UUID

from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from vittas.audit import AuditLogger, create_correlation_id
from vittas.config import ReconcilerSettings, get_settings
from vittas.models.audit import AuditEventBuilder
from vittas.models.subscription import SubscriptionInfo, SubscriptionTier
from vittas.services.storage import SubscriptionStorageInterface
from vittas.subscriptions.service import SubscriptionService


class ReconcilerPhase(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    SETTLED = "settled"


class ReconcilerState(BaseModel):
    """Everything a reconciler remembers between refreshes."""

    phase: ReconcilerPhase = ReconcilerPhase.IDLE
    subscription: Optional[SubscriptionInfo] = None
    in_flight: bool = False
    last_fetch_started: Optional[float] = Field(
        default=None,
        description="Clock reading when the previous fetch started"
    )
    retry_count: int = 0
    degraded: bool = False
    last_error: Optional[str] = None


class _PrimaryReadFailed(Exception):
    pass


class SubscriptionReconciler:
    """
    Keeps one user's subscription view in step with the store.

    Usage:
        reconciler = SubscriptionReconciler(user_id, storage, service)
        await reconciler.refresh()                 # background trigger
        await reconciler.refresh(force=True)       # after payment redirect
        await reconciler.wait_for_tier(SubscriptionTier.PREMIUM)
    """

    def __init__(
        self,
        user_id: UUID,
        storage: SubscriptionStorageInterface,
        status_service: SubscriptionService,
        settings: Optional[ReconcilerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.user_id = user_id
        self.state = ReconcilerState()
        self._storage = storage
        self._status_service = status_service
        self._settings = settings or get_settings().reconciler
        self._audit_logger = audit_logger or AuditLogger()
        self._clock = clock
        self._sleep = sleep

    @property
    def subscription(self) -> Optional[SubscriptionInfo]:
        return self.state.subscription

    def can_access(self, feature: str) -> bool:
        """Feature gate on the settled tier. Nothing is unlocked before the first settle."""
        if self.state.subscription is None:
            return False
        return self.state.subscription.can_access(feature)

    async def refresh(self, force: bool = False) -> Optional[SubscriptionInfo]:
        """
        Run one fetch cycle unless it is dropped.

        Returns the settled subscription, or None when the call was dropped.
        """
        state = self.state
        if state.in_flight:
            return None

        if not force and state.last_fetch_started is not None:
            elapsed = self._clock() - state.last_fetch_started
            if elapsed < self._settings.min_refresh_interval_seconds:
                return None

        state.in_flight = True
        try:
            if force:
                state.phase = ReconcilerPhase.FETCHING
                await self._sleep(self._settings.forced_refresh_delay_seconds)
            return await self._fetch_cycle()
        finally:
            state.in_flight = False

    async def wait_for_tier(self, expected_tier: SubscriptionTier) -> bool:
        """
        Force a refresh, then poll until the expected tier shows up.

        Polls bypass the rate limiter but never overlap another fetch.
        Returns whether the tier was observed.
        """
        info = await self.refresh(force=True)
        if info is not None and info.tier == expected_tier:
            return True

        polling = AsyncRetrying(
            stop=stop_after_attempt(self._settings.tier_poll_attempts),
            wait=wait_fixed(self._settings.tier_poll_interval_seconds),
            retry=retry_if_result(lambda seen: seen != expected_tier),
            sleep=self._sleep,
        )
        try:
            await polling(self._poll_once)
        except RetryError:
            return False
        return True

    async def _poll_once(self) -> Optional[SubscriptionTier]:
        if self.state.in_flight:
            current = self.state.subscription
            return current.tier if current else None

        self.state.in_flight = True
        try:
            return (await self._fetch_cycle()).tier
        finally:
            self.state.in_flight = False

    async def _fetch_cycle(self) -> SubscriptionInfo:
        """FETCHING → SETTLED. Never raises for read failures."""
        state = self.state
        state.phase = ReconcilerPhase.FETCHING
        state.last_fetch_started = self._clock()
        state.retry_count = 0
        correlation_id = create_correlation_id()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_retries),
            wait=wait_exponential(multiplier=self._settings.retry_backoff_seconds),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            info, source = await retrying(self._read_once)
        except _PrimaryReadFailed as e:
            return await self._settle_degraded(str(e), correlation_id)

        state.degraded = False
        state.last_error = None
        self._settle(info)
        await self._audit_logger.log(AuditEventBuilder.subscription_refreshed(
            user_id=self.user_id,
            tier=info.tier.value,
            subscribed=info.subscribed,
            source=source,
            correlation_id=correlation_id,
        ))
        return info

    async def _read_once(self) -> tuple[SubscriptionInfo, str]:
        """
        One attempt: the subscribers row, else the fallback status read.

        Raises _PrimaryReadFailed to ask for another attempt.
        """
        state = self.state
        try:
            record = await self._storage.get_subscriber(self.user_id)
            return SubscriptionInfo.from_record(record), "primary"
        except Exception as e:
            state.retry_count += 1
            state.last_error = str(e)
            if state.retry_count >= self._settings.max_retries:
                raise _PrimaryReadFailed(str(e)) from e

        try:
            return await self._status_service.get_status(self.user_id), "fallback"
        except Exception as e:
            state.last_error = str(e)
            raise _PrimaryReadFailed(str(e)) from e

    def _settle(self, info: SubscriptionInfo) -> None:
        self.state.subscription = info
        self.state.phase = ReconcilerPhase.SETTLED

    async def _settle_degraded(self, error: str, correlation_id: UUID) -> SubscriptionInfo:
        state = self.state
        state.degraded = True
        state.last_error = error
        info = SubscriptionInfo.default()
        self._settle(info)
        await self._audit_logger.log(AuditEventBuilder.subscription_degraded(
            user_id=self.user_id,
            attempts=state.retry_count,
            error_message=error,
            correlation_id=correlation_id,
        ))
        return info

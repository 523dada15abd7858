"""
Subscription Reconciliation Service

Single writer of a user's subscription state. Every path that changes a
record (cancel button, switch-to-free form, PayPal webhooks, manual sync)
goes through one of two transitions:

- ``_downgrade``: active paid record -> free plan, status cancelled/expired
- ``_reactivate``: cancelled/expired record -> active paid record

Both are compare-and-swap updates on (id, status, version), so two requests
racing on the same user apply at most one transition. The service owns the
unit of work: each public operation commits or rolls back before returning.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sharkszone.domain.subscription import (
    PAYPAL_STATUS_MAP,
    CancellationResult,
    CancellationSource,
    PlanName,
    SubscriptionInfo,
    SubscriptionStatus,
    SyncResult,
    ValidationResult,
)
from sharkszone.infrastructure.db.models.base import utcnow
from sharkszone.infrastructure.db.models.subscription import UserSubscription
from sharkszone.infrastructure.db.models.subscription_event import SubscriptionEventType
from sharkszone.infrastructure.db.repositories import (
    PlanRepository,
    SubscriptionEventRepository,
    SubscriptionRepository,
)
from sharkszone.infrastructure.exceptions import (
    ConcurrentModification,
    ConfirmationRequired,
    GatewayRequestFailed,
    MissingSubscriptionId,
    RemoteCancelFailed,
)
from sharkszone.infrastructure.payments.paypal_client import PayPalClient


logger = logging.getLogger(__name__)


# Provider answers meaning "this subscription id does not exist here"
NOT_FOUND_STATUSES = {400, 404, 422}


@dataclass(frozen=True)
class _RecordSnapshot:
    """Plain copy of the fields a transition needs after a rollback."""
    id: str
    user_id: str
    status: str
    restricted: bool
    version: int
    external_subscription_id: Optional[str]

    @classmethod
    def of(cls, record: UserSubscription) -> "_RecordSnapshot":
        return cls(
            id=record.id,
            user_id=record.user_id,
            status=record.status,
            restricted=record.restricted,
            version=record.version,
            external_subscription_id=record.external_subscription_id,
        )


class ReconciliationService:
    """
    Keeps local subscription records consistent with user intent and PayPal.

    Args:
        session: Request-scoped database session
        gateway: Shared PayPal client
    """

    def __init__(self, session: AsyncSession, gateway: PayPalClient):
        self._session = session
        self._gateway = gateway
        self._plans = PlanRepository(session)
        self._subscriptions = SubscriptionRepository(session)
        self._events = SubscriptionEventRepository(session)

    # =========================================================================
    # User-initiated downgrades
    # =========================================================================

    async def cancel(
        self,
        user_id: str,
        reason: Optional[str] = None,
        source: CancellationSource = CancellationSource.USER_CANCEL_BUTTON,
        should_cancel_paypal: bool = True,
        metadata: Optional[dict[str, Any]] = None,
        event_type: SubscriptionEventType = SubscriptionEventType.SUBSCRIPTION_CANCELLED,
    ) -> CancellationResult:
        """
        Downgrade the user's active paid subscription to the free plan.

        Idempotent: a user who is already free gets ``already_free=True`` and
        nothing is written. The PayPal cancellation is best-effort and runs
        before the local write; its failure becomes a warning.

        Args:
            user_id: Authenticated user ID
            reason: Free-text cancellation reason
            source: What initiated the cancellation
            should_cancel_paypal: Also cancel the PayPal subscription
            metadata: Extra context stored on the audit event
            event_type: Audit event type to record

        Raises:
            ConcurrentModification: If a new active subscription appeared meanwhile
        """
        reason = reason or "User requested cancellation"
        loaded = await self._subscriptions.get_active_with_plan(user_id)
        if loaded is None or loaded[1].name == PlanName.FREE.value:
            logger.info(f"Cancel for user {user_id}: already on free plan")
            return CancellationResult(already_free=True, source=source)

        record, plan = loaded
        snapshot = _RecordSnapshot.of(record)
        previous_plan = plan.name

        warnings: list[dict[str, Any]] = []
        paypal_cancelled = False
        if (
            should_cancel_paypal
            and snapshot.external_subscription_id
            and source != CancellationSource.PAYPAL_WEBHOOK
        ):
            try:
                await self._gateway.cancel_remote_subscription(
                    snapshot.external_subscription_id, reason
                )
                paypal_cancelled = True
            except RemoteCancelFailed as e:
                warnings.append({
                    "code": e.error_code,
                    "message": e.message,
                    "debug_id": e.debug_id,
                })

        updated = await self._downgrade(
            snapshot,
            target=SubscriptionStatus.CANCELLED,
            reason=reason,
            source=source,
            event_type=event_type,
            event_data={
                "previous_plan": previous_plan,
                "paypal_cancelled": paypal_cancelled,
                "metadata": metadata or {},
            },
        )

        if updated is None:
            current = await self._subscriptions.get_active_with_plan(user_id)
            if current is None or current[1].name == PlanName.FREE.value:
                return CancellationResult(already_free=True, source=source, warnings=warnings)
            raise ConcurrentModification(
                "Subscription changed during cancellation, please retry",
                details={"subscription_id": current[0].id},
            )

        logger.info(
            f"Cancelled subscription {updated.id} for user {user_id} "
            f"(source={source.value}, paypal_cancelled={paypal_cancelled})"
        )
        return CancellationResult(
            subscription_id=updated.id,
            previous_plan=previous_plan,
            cancelled_at=updated.cancelled_at,
            paypal_cancelled=paypal_cancelled,
            source=source,
            warnings=warnings,
        )

    async def switch_to_free(
        self,
        user_id: str,
        confirm_cancellation: Optional[bool],
        reason: Optional[str] = None,
        should_cancel_paypal: bool = True,
        metadata: Optional[dict[str, Any]] = None,
    ) -> CancellationResult:
        """
        Explicit plan switch from the pricing form.

        Raises:
            ConfirmationRequired: Unless ``confirm_cancellation`` is exactly True
        """
        if confirm_cancellation is not True:
            raise ConfirmationRequired("Cancellation confirmation is required")

        return await self.cancel(
            user_id,
            reason=reason or "User switched to free plan",
            source=CancellationSource.USER_SWITCH_FORM,
            should_cancel_paypal=should_cancel_paypal,
            metadata=metadata,
            event_type=SubscriptionEventType.PLAN_SWITCH,
        )

    async def release_active(
        self,
        user_id: str,
        reason: str,
        source: CancellationSource,
    ) -> Optional[str]:
        """
        Downgrade whatever record is active, leaving the transaction open.

        Used when a new paid record is about to replace the current one; no
        PayPal call is made.

        Returns:
            Id of the released record, or None if the user had none

        Raises:
            ConcurrentModification: If the active record changed meanwhile
        """
        loaded = await self._subscriptions.get_active_with_plan(user_id)
        if loaded is None:
            return None

        record, plan = loaded
        snapshot = _RecordSnapshot.of(record)
        updated = await self._downgrade(
            snapshot,
            target=SubscriptionStatus.CANCELLED,
            reason=reason,
            source=source,
            event_type=SubscriptionEventType.SUBSCRIPTION_CANCELLED,
            event_data={"previous_plan": plan.name},
            commit=False,
        )
        if updated is None:
            raise ConcurrentModification(
                "Subscription changed during checkout, please retry",
                details={"subscription_id": snapshot.id},
            )
        return snapshot.id

    # =========================================================================
    # Provider reconciliation
    # =========================================================================

    async def sync_with_paypal(self, user_id: str) -> SyncResult:
        """
        Pull PayPal's status for the user's current record and converge on it.

        Running it twice without a remote change reports ``changed=False``
        the second time.
        """
        record = await self._subscriptions.get_current(user_id)
        if record is None or not record.external_subscription_id:
            return SyncResult(synced=False, reason="no_external_subscription")

        return await self._sync_record(record, CancellationSource.PAYPAL_SYNC)

    async def sync_external(self, external_id: str) -> SyncResult:
        """Sync the record linked to a PayPal subscription id."""
        record = await self._subscriptions.get_by_external_id(external_id)
        if record is None:
            return SyncResult(synced=False, reason="no_local_subscription")

        return await self._sync_record(record, CancellationSource.PAYPAL_SYNC)

    async def apply_remote_status(
        self,
        external_id: str,
        remote_status: str,
        source: CancellationSource = CancellationSource.PAYPAL_WEBHOOK,
        allow_reactivation: bool = True,
    ) -> SyncResult:
        """
        Apply a status PayPal pushed to us (webhook) to the linked record.

        Args:
            external_id: PayPal subscription id from the event resource
            remote_status: PayPal status the event implies (e.g. "CANCELLED")
            source: Recorded as the cancellation source on downgrades
            allow_reactivation: Whether an inactive record may become active
        """
        record = await self._subscriptions.get_by_external_id(external_id)
        if record is None:
            logger.warning(f"No local subscription for PayPal id {external_id}")
            return SyncResult(synced=False, reason="no_local_subscription")

        return await self._apply(record, remote_status, source, allow_reactivation)

    async def validate_paypal_subscription(self, subscription_id: Optional[str]) -> ValidationResult:
        """
        Check whether PayPal resolves a subscription id.

        ``valid`` is True for any subscription PayPal returns, whatever its
        status; the status itself is reported separately.

        Raises:
            MissingSubscriptionId: If no id was given (no network call is made)
        """
        if not subscription_id or not subscription_id.strip():
            raise MissingSubscriptionId("Subscription ID is required")

        try:
            remote = await self._gateway.get_subscription_details(subscription_id.strip())
        except GatewayRequestFailed as e:
            if e.status_code in NOT_FOUND_STATUSES:
                return ValidationResult(valid=False, status="not_found")
            raise

        return ValidationResult(valid=True, status=remote.status)

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_subscription_info(self, user_id: str) -> SubscriptionInfo:
        """
        Current plan, quotas and remaining usage.

        Users without any record get the free plan defaults.
        """
        record = await self._subscriptions.get_current(user_id)
        if record is None:
            free = await self._plans.require(PlanName.FREE)
            return SubscriptionInfo(
                user_id=user_id,
                plan_name=free.name,
                plan_display_name=free.display_name,
                price_check_limit=free.price_check_limit,
                post_creation_limit=free.post_creation_limit,
                price_checks_remaining=free.price_check_limit,
                posts_remaining=free.post_creation_limit,
                is_materialized=False,
            )

        plan = await self._plans.get_by_id(record.plan_id)
        return SubscriptionInfo(
            user_id=user_id,
            plan_name=plan.name,
            plan_display_name=plan.display_name,
            status=record.status,
            restricted=record.restricted,
            price_check_limit=plan.price_check_limit,
            post_creation_limit=plan.post_creation_limit,
            price_checks_used=record.price_checks_used,
            posts_created=record.posts_created,
            price_checks_remaining=max(plan.price_check_limit - record.price_checks_used, 0),
            posts_remaining=max(plan.post_creation_limit - record.posts_created, 0),
            external_subscription_id=record.external_subscription_id,
            started_at=record.started_at,
            expires_at=record.expires_at,
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    async def _sync_record(self, record: UserSubscription, source: CancellationSource) -> SyncResult:
        snapshot = _RecordSnapshot.of(record)
        try:
            remote = await self._gateway.get_subscription_details(snapshot.external_subscription_id)
        except GatewayRequestFailed as e:
            if e.status_code in NOT_FOUND_STATUSES:
                logger.warning(
                    f"PayPal has no subscription {snapshot.external_subscription_id} "
                    f"(HTTP {e.status_code})"
                )
                return SyncResult(synced=False, reason="external_subscription_not_found")
            raise

        return await self._apply(record, remote.status, source)

    async def _apply(
        self,
        record: UserSubscription,
        remote_status: str,
        source: CancellationSource,
        allow_reactivation: bool = True,
    ) -> SyncResult:
        """Move ``record`` to the local state that ``remote_status`` maps to."""
        remote_status = (remote_status or "").upper()
        if remote_status not in PAYPAL_STATUS_MAP:
            logger.warning(f"Unrecognized PayPal status {remote_status!r} for {record.external_subscription_id}")
            return SyncResult(synced=False, reason="unknown_remote_status", remote_status=remote_status)

        mapped = PAYPAL_STATUS_MAP[remote_status]
        if mapped is None:
            return SyncResult(synced=False, reason="remote_status_pending", remote_status=remote_status)

        target, target_restricted = mapped
        snapshot = _RecordSnapshot.of(record)
        current = SubscriptionStatus(snapshot.status)

        if current == target and snapshot.restricted == target_restricted:
            return SyncResult(
                synced=True,
                changed=False,
                from_status=current.value,
                to_status=current.value,
                restricted=snapshot.restricted,
                remote_status=remote_status,
            )

        if target == SubscriptionStatus.ACTIVE:
            if current == SubscriptionStatus.ACTIVE:
                updated = await self._set_restricted(snapshot, target_restricted, remote_status)
            elif not allow_reactivation:
                return SyncResult(
                    synced=True,
                    changed=False,
                    reason="inactive_subscription",
                    from_status=current.value,
                    to_status=current.value,
                    remote_status=remote_status,
                )
            else:
                updated = await self._reactivate(snapshot, target_restricted, source, remote_status)
                if updated is None:
                    return SyncResult(
                        synced=True,
                        changed=False,
                        reason="another_active_subscription",
                        from_status=current.value,
                        to_status=current.value,
                        remote_status=remote_status,
                    )
        elif current == SubscriptionStatus.ACTIVE:
            updated = await self._downgrade(
                snapshot,
                target=target,
                reason=f"PayPal reported {remote_status}",
                source=source,
                event_type=SubscriptionEventType.SUBSCRIPTION_CANCELLED,
                event_data={"remote_status": remote_status},
            )
        else:
            updated = await self._set_status(snapshot, target, remote_status)

        if updated is None:
            raise ConcurrentModification(
                "Subscription changed during reconciliation, please retry",
                details={"subscription_id": snapshot.id},
            )

        logger.info(
            f"Reconciled subscription {snapshot.id}: {current.value} -> {updated.status} "
            f"(remote {remote_status}, restricted={updated.restricted})"
        )
        return SyncResult(
            synced=True,
            changed=True,
            from_status=current.value,
            to_status=updated.status,
            restricted=updated.restricted,
            remote_status=remote_status,
        )

    async def _downgrade(
        self,
        snapshot: _RecordSnapshot,
        target: SubscriptionStatus,
        reason: str,
        source: CancellationSource,
        event_type: SubscriptionEventType,
        event_data: dict[str, Any],
        commit: bool = True,
    ) -> Optional[UserSubscription]:
        """
        Active record -> free plan with status ``target``.

        Returns None (after rolling back) when the record no longer matches
        the snapshot. With ``commit=False`` the caller finishes the transaction.
        """
        free = await self._plans.require(PlanName.FREE)

        if target == SubscriptionStatus.CANCELLED:
            expired = await self._subscriptions.expire_previous_cancelled(
                snapshot.user_id, keep_id=snapshot.id
            )
            if expired:
                logger.info(f"Expired {expired} older cancelled record(s) for user {snapshot.user_id}")

        updated = await self._subscriptions.compare_and_swap(
            snapshot.id,
            snapshot.version,
            {
                "plan_id": free.id,
                "status": target.value,
                "restricted": False,
                "cancelled_at": utcnow(),
                "cancellation_reason": reason,
                "cancellation_source": source.value,
            },
        )
        if updated is None:
            await self._session.rollback()
            return None

        await self._events.append(
            snapshot.user_id,
            event_type,
            {
                "subscription_id": snapshot.id,
                "reason": reason,
                "source": source.value,
                "status": target.value,
                **event_data,
            },
        )
        if commit:
            await self._session.commit()
        return updated

    async def _reactivate(
        self,
        snapshot: _RecordSnapshot,
        restricted: bool,
        source: CancellationSource,
        remote_status: str,
    ) -> Optional[UserSubscription]:
        """
        Cancelled/expired record -> active paid record.

        Skipped (returns None) when the user already has a different active
        record, e.g. a checkout that happened after this subscription ended.
        """
        other = await self._subscriptions.get_active(snapshot.user_id)
        if other is not None and other.id != snapshot.id:
            logger.warning(
                f"Not reactivating {snapshot.id}: user {snapshot.user_id} "
                f"already has active subscription {other.id}"
            )
            return None

        pro = await self._plans.require(PlanName.PRO)
        try:
            updated = await self._subscriptions.compare_and_swap(
                snapshot.id,
                snapshot.version,
                {
                    "plan_id": pro.id,
                    "status": SubscriptionStatus.ACTIVE.value,
                    "restricted": restricted,
                    "cancelled_at": None,
                    "cancellation_reason": None,
                    "cancellation_source": None,
                },
                expected_status=SubscriptionStatus(snapshot.status),
            )
        except IntegrityError as e:
            # Another active row won the partial unique index
            await self._session.rollback()
            raise ConcurrentModification(
                "Another active subscription exists for this user",
                details={"subscription_id": snapshot.id},
            ) from e

        if updated is None:
            await self._session.rollback()
            raise ConcurrentModification(
                "Subscription changed during reactivation, please retry",
                details={"subscription_id": snapshot.id},
            )

        await self._events.append(
            snapshot.user_id,
            SubscriptionEventType.SUBSCRIPTION_ACTIVATED,
            {
                "subscription_id": snapshot.id,
                "previous_status": snapshot.status,
                "remote_status": remote_status,
                "source": source.value,
            },
        )
        await self._session.commit()
        return updated

    async def _set_restricted(
        self,
        snapshot: _RecordSnapshot,
        restricted: bool,
        remote_status: str,
    ) -> Optional[UserSubscription]:
        updated = await self._subscriptions.compare_and_swap(
            snapshot.id,
            snapshot.version,
            {"restricted": restricted},
        )
        if updated is None:
            await self._session.rollback()
            return None

        await self._events.append(
            snapshot.user_id,
            SubscriptionEventType.SUBSCRIPTION_RESTRICTED if restricted
            else SubscriptionEventType.SUBSCRIPTION_ACTIVATED,
            {"subscription_id": snapshot.id, "restricted": restricted, "remote_status": remote_status},
        )
        await self._session.commit()
        return updated

    async def _set_status(
        self,
        snapshot: _RecordSnapshot,
        target: SubscriptionStatus,
        remote_status: str,
    ) -> Optional[UserSubscription]:
        """Status-only move between the two inactive states."""
        updated = await self._subscriptions.compare_and_swap(
            snapshot.id,
            snapshot.version,
            {"status": target.value},
            expected_status=SubscriptionStatus(snapshot.status),
        )
        if updated is None:
            await self._session.rollback()
            return None

        await self._events.append(
            snapshot.user_id,
            SubscriptionEventType.SUBSCRIPTION_SYNCED,
            {
                "subscription_id": snapshot.id,
                "from": snapshot.status,
                "to": target.value,
                "remote_status": remote_status,
            },
        )
        await self._session.commit()
        return updated


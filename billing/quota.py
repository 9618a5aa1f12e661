"""
Token quota gate.

check() is the read-only gate run before an external AI call.
charge_for_stage() debits actual usage after a successful call; the balance
check, decrement and ledger insert share one transaction with the user row
locked, so two concurrent charges can never overdraw the balance.

Every operation has an async twin (acheck, acharge_for_stage, acredit) for the
pipeline; views and the payment webhook use the sync versions.
"""
import logging
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Optional

from asgiref.sync import sync_to_async
from django.contrib.auth import get_user_model
from django.db import transaction

from .models import TokenUsage
from .pricing import calculate_cost

logger = logging.getLogger(__name__)


@dataclass
class ChargeResult:
    """Outcome of a gate check, charge or credit."""
    success: bool
    cost_usd: Decimal = Decimal('0')
    new_balance: Optional[Decimal] = None
    usage_id: Optional[int] = None
    current_balance: Optional[Decimal] = None
    tokens_needed: Optional[Decimal] = None
    duplicate: bool = False

    def to_dict(self):
        data = asdict(self)
        if self.success:
            return {k: data[k] for k in ('success', 'new_balance', 'usage_id')}
        return {k: data[k] for k in ('success', 'current_balance', 'tokens_needed')}


def _as_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


class QuotaGate:
    """Per-user balance guard backed by User.token_balance and the TokenUsage ledger."""

    def check(self, user_id, cost) -> ChargeResult:
        """Does the user's balance cover cost? Never mutates anything."""
        cost = _as_decimal(cost)
        balance = get_user_model().objects.values_list('token_balance', flat=True).get(pk=user_id)
        if balance < cost:
            logger.info(f"Quota check rejected for user {user_id}: balance {balance} < {cost}")
            return ChargeResult(success=False, cost_usd=cost, current_balance=balance, tokens_needed=cost)
        return ChargeResult(success=True, cost_usd=cost, new_balance=balance, current_balance=balance)

    def charge_for_stage(
        self,
        user_id,
        service_name: str,
        model_name: str = '',
        usage=None,
        flat_cost=None,
        brand_id=None,
        campaign_id=None,
    ) -> ChargeResult:
        """
        Debit one stage's cost and append a ledger entry.

        Cost is flat_cost when given, otherwise priced from usage
        (prompt/completion tokens; a bare total is split 70/30).
        """
        prompt_tokens = getattr(usage, 'prompt_tokens', 0) or 0
        completion_tokens = getattr(usage, 'completion_tokens', 0) or 0
        total_tokens = getattr(usage, 'total_tokens', 0) or (prompt_tokens + completion_tokens)

        if flat_cost is not None:
            cost = _as_decimal(flat_cost)
        else:
            cost = calculate_cost(model_name, prompt_tokens, completion_tokens, total_tokens)

        User = get_user_model()
        with transaction.atomic():
            user = User.objects.select_for_update().get(pk=user_id)
            if user.token_balance < cost:
                logger.warning(
                    f"Charge rejected for user {user_id} ({service_name}): "
                    f"balance {user.token_balance} < {cost}"
                )
                return ChargeResult(
                    success=False,
                    cost_usd=cost,
                    current_balance=user.token_balance,
                    tokens_needed=cost,
                )

            user.token_balance = user.token_balance - cost
            user.save(update_fields=['token_balance', 'updated_at'])
            entry = TokenUsage.objects.create(
                user=user,
                service_name=service_name,
                model_name=model_name or '',
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=total_tokens,
                cost_usd=cost,
                balance_after=user.token_balance,
                brand_id=brand_id,
                campaign_id=campaign_id,
                request_data={
                    'prompt_tokens': prompt_tokens,
                    'completion_tokens': completion_tokens,
                    'total_tokens': total_tokens,
                },
            )

        logger.info(f"Charged user {user_id} ${cost} for {service_name}; balance {user.token_balance}")
        return ChargeResult(success=True, cost_usd=cost, new_balance=user.token_balance, usage_id=entry.id)

    def credit(self, user_id, amount, reason: str, request_data=None, idempotency_key=None) -> ChargeResult:
        """
        Add funds (subscription payment, admin top-up) with a negative-cost ledger entry.

        With an idempotency_key, a second credit under the same key is a no-op
        returning the first entry (duplicate=True). The lookup runs with the
        user row locked, so concurrent deliveries of one payment credit once.
        """
        amount = _as_decimal(amount)
        if amount <= 0:
            raise ValueError("Credit amount must be positive")

        request_data = dict(request_data or {})
        if idempotency_key:
            request_data['idempotency_key'] = idempotency_key

        User = get_user_model()
        with transaction.atomic():
            user = User.objects.select_for_update().get(pk=user_id)
            if idempotency_key:
                existing = TokenUsage.objects.filter(
                    user=user, request_data__idempotency_key=idempotency_key,
                ).first()
                if existing is not None:
                    logger.info(f"Credit {idempotency_key} for user {user_id} already applied")
                    return ChargeResult(
                        success=True,
                        cost_usd=existing.cost_usd,
                        new_balance=user.token_balance,
                        usage_id=existing.id,
                        duplicate=True,
                    )
            user.token_balance = user.token_balance + amount
            user.save(update_fields=['token_balance', 'updated_at'])
            entry = TokenUsage.objects.create(
                user=user,
                service_name=reason,
                cost_usd=-amount,
                balance_after=user.token_balance,
                request_data=request_data,
            )

        logger.info(f"Credited user {user_id} ${amount} ({reason}); balance {user.token_balance}")
        return ChargeResult(success=True, cost_usd=-amount, new_balance=user.token_balance, usage_id=entry.id)

    async def acheck(self, user_id, cost) -> ChargeResult:
        return await sync_to_async(self.check)(user_id, cost)

    async def acharge_for_stage(self, user_id, service_name, model_name='', usage=None, flat_cost=None,
                                brand_id=None, campaign_id=None) -> ChargeResult:
        return await sync_to_async(self.charge_for_stage)(
            user_id, service_name, model_name,
            usage=usage, flat_cost=flat_cost, brand_id=brand_id, campaign_id=campaign_id,
        )

    async def acredit(self, user_id, amount, reason, request_data=None, idempotency_key=None) -> ChargeResult:
        return await sync_to_async(self.credit)(user_id, amount, reason, request_data, idempotency_key)

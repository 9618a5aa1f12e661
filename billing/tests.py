"""
Tests for billing app - pricing, the quota gate, the usage ledger and Stripe webhooks.
"""
import asyncio
import threading
from decimal import Decimal
from types import SimpleNamespace

import pytest
from asgiref.sync import async_to_sync
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import connection
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from ai.providers import Usage
from billing.models import TokenUsage
from billing.pricing import calculate_cost, price_for_model, split_total_tokens, stage_cost_estimate
from billing.quota import QuotaGate


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def user_model():
    return get_user_model()


@pytest.fixture
def create_user(user_model):
    def _create_user(email="test@example.com", password="testpass123", balance='0'):
        user = user_model.objects.create_user(
            email=email,
            username=email,
            password=password
        )
        user.token_balance = Decimal(balance)
        user.save()
        return user
    return _create_user


@pytest.fixture
def authenticated_client(api_client, create_user):
    user = create_user(balance='5.00')
    refresh = RefreshToken.for_user(user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {str(refresh.access_token)}')
    return api_client, user


class TestPricing:

    def test_known_model(self):
        # 1000 prompt tokens at $2.50/1M + 500 completion at $10/1M
        assert calculate_cost('gpt-4o', 1000, 500) == Decimal('0.007500')

    def test_provider_prefix_and_snapshot(self):
        assert price_for_model('openai/gpt-4o-mini') == price_for_model('gpt-4o-mini')
        assert price_for_model('gpt-4o-mini-2024-07-18') == price_for_model('gpt-4o-mini')
        assert price_for_model('gpt-4o-2024-08-06') == price_for_model('gpt-4o')

    def test_unknown_model_uses_default(self):
        price = price_for_model('mystery-model')
        assert price.input_per_1m == Decimal('3.00')
        assert price.output_per_1m == Decimal('15.00')

    def test_bare_total_is_split_70_30(self):
        assert split_total_tokens(1000) == (700, 300)
        assert calculate_cost('gpt-4o', total_tokens=1000) == calculate_cost('gpt-4o', 700, 300)

    def test_stage_estimates(self, settings):
        settings.BILLING = {
            'STAGE_COST_ESTIMATES': {'writing': '0.20'},
            'DEFAULT_STAGE_COST': '0.05',
        }
        assert stage_cost_estimate('writing') == Decimal('0.20')
        assert stage_cost_estimate('unlisted') == Decimal('0.05')


@pytest.mark.django_db
class TestQuotaGate:

    def test_check_rejects_insufficient_balance(self, create_user):
        user = create_user(balance='0.02')

        result = QuotaGate().check(user.id, Decimal('0.05'))

        assert not result.success
        assert result.current_balance == Decimal('0.02')
        assert result.tokens_needed == Decimal('0.05')
        assert result.to_dict() == {
            'success': False,
            'current_balance': Decimal('0.02'),
            'tokens_needed': Decimal('0.05'),
        }

    def test_check_never_mutates(self, create_user):
        user = create_user(balance='1.00')

        assert QuotaGate().check(user.id, '0.05').success

        user.refresh_from_db()
        assert user.token_balance == Decimal('1.00')
        assert TokenUsage.objects.count() == 0

    def test_charge_debits_and_writes_ledger(self, create_user):
        user = create_user(balance='1.00')

        result = QuotaGate().charge_for_stage(
            user.id, 'writing', 'gpt-4o', usage=Usage(1000, 500, 1500),
        )

        assert result.success
        assert result.cost_usd == Decimal('0.007500')
        user.refresh_from_db()
        assert user.token_balance == Decimal('0.992500')
        entry = TokenUsage.objects.get(pk=result.usage_id)
        assert entry.service_name == 'writing'
        assert entry.total_tokens == 1500
        assert entry.balance_after == user.token_balance
        assert entry.request_data == {'prompt_tokens': 1000, 'completion_tokens': 500, 'total_tokens': 1500}

    def test_charge_rejected_leaves_balance_alone(self, create_user):
        user = create_user(balance='0.02')

        result = QuotaGate().charge_for_stage(user.id, 'review', flat_cost='0.05')

        assert not result.success
        assert result.to_dict()['current_balance'] == Decimal('0.02')
        user.refresh_from_db()
        assert user.token_balance == Decimal('0.02')
        assert TokenUsage.objects.count() == 0

    def test_charge_can_spend_exact_balance(self, create_user):
        user = create_user(balance='0.05')

        result = QuotaGate().charge_for_stage(user.id, 'review', flat_cost=Decimal('0.05'))

        assert result.success
        assert result.new_balance == Decimal('0')

    def test_credit(self, create_user):
        user = create_user(balance='0.50')

        result = QuotaGate().credit(user.id, '10.00', 'admin_topup')

        assert result.success
        assert result.new_balance == Decimal('10.50')
        entry = TokenUsage.objects.get(pk=result.usage_id)
        assert entry.cost_usd == Decimal('-10.00')
        assert entry.is_credit

    def test_credit_with_same_key_applies_once(self, create_user):
        user = create_user(balance='1.00')
        gate = QuotaGate()

        first = gate.credit(user.id, '5.00', 'subscription_payment', idempotency_key='invoice:in_9')
        second = gate.credit(user.id, '5.00', 'subscription_payment', idempotency_key='invoice:in_9')

        assert first.success and not first.duplicate
        assert second.success and second.duplicate
        assert second.usage_id == first.usage_id
        user.refresh_from_db()
        assert user.token_balance == Decimal('6.00')
        entry = TokenUsage.objects.get(user=user)
        assert entry.request_data['idempotency_key'] == 'invoice:in_9'

    def test_credit_must_be_positive(self, create_user):
        user = create_user()
        with pytest.raises(ValueError):
            QuotaGate().credit(user.id, 0, 'admin_topup')

    def test_ledger_is_append_only(self, create_user):
        user = create_user(balance='1.00')
        result = QuotaGate().charge_for_stage(user.id, 'review', flat_cost='0.05')
        entry = TokenUsage.objects.get(pk=result.usage_id)

        entry.cost_usd = Decimal('0')
        with pytest.raises(ValueError):
            entry.save()


@pytest.mark.django_db(transaction=True)
class TestConcurrentQuota:

    def _run_in_threads(self, *calls):
        barrier = threading.Barrier(len(calls))
        results = []

        def run(call):
            try:
                barrier.wait()
                results.append(call())
            finally:
                connection.close()

        threads = [threading.Thread(target=run, args=(call,)) for call in calls]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return results

    def test_gathered_charges_cannot_overdraw(self, create_user):
        user = create_user(balance='0.10')
        gate = QuotaGate()

        async def charge_both():
            return await asyncio.gather(
                gate.acharge_for_stage(user.id, 'writing', flat_cost='0.06'),
                gate.acharge_for_stage(user.id, 'review', flat_cost='0.06'),
            )

        results = async_to_sync(charge_both)()

        assert sorted(r.success for r in results) == [False, True]
        user.refresh_from_db()
        assert user.token_balance == Decimal('0.04')
        entry = TokenUsage.objects.get(user=user)
        assert entry.balance_after == user.token_balance

    @pytest.mark.skipif(connection.vendor != 'postgresql', reason='needs row-level locking')
    def test_threaded_charges_cannot_overdraw(self, create_user):
        user = create_user(balance='0.10')

        results = self._run_in_threads(
            lambda: QuotaGate().charge_for_stage(user.id, 'writing', flat_cost='0.06'),
            lambda: QuotaGate().charge_for_stage(user.id, 'review', flat_cost='0.06'),
        )

        assert sorted(r.success for r in results) == [False, True]
        rejected = next(r for r in results if not r.success)
        assert rejected.current_balance == Decimal('0.04')
        user.refresh_from_db()
        assert user.token_balance == Decimal('0.04')
        entry = TokenUsage.objects.get(user=user)
        assert entry.balance_after == user.token_balance

    @pytest.mark.skipif(connection.vendor != 'postgresql', reason='needs row-level locking')
    def test_threaded_invoice_credits_apply_once(self, create_user):
        user = create_user(balance='0.50')

        def credit():
            return QuotaGate().credit(user.id, '10.00', 'subscription_payment', idempotency_key='invoice:in_7')

        results = self._run_in_threads(credit, credit)

        assert sorted(r.duplicate for r in results) == [False, True]
        user.refresh_from_db()
        assert user.token_balance == Decimal('10.50')
        assert TokenUsage.objects.filter(user=user).count() == 1


@pytest.mark.django_db
class TestBillingEndpoints:

    def test_balance(self, authenticated_client):
        client, user = authenticated_client

        response = client.get('/api/v1/billing/balance/')

        assert response.status_code == 200
        assert Decimal(response.data['token_balance']) == Decimal('5.00')
        assert response.data['subscription_status'] == 'inactive'
        assert response.data['is_trial_active'] is False

    def test_usage_ledger_is_scoped_and_filtered(self, authenticated_client, create_user):
        client, user = authenticated_client
        other = create_user(email='other@example.com', balance='1.00')
        gate = QuotaGate()
        gate.charge_for_stage(user.id, 'writing', flat_cost='0.10')
        gate.charge_for_stage(user.id, 'review', flat_cost='0.05')
        gate.charge_for_stage(other.id, 'writing', flat_cost='0.10')

        response = client.get('/api/v1/billing/usage/')
        assert response.status_code == 200
        assert len(response.data['results']) == 2

        response = client.get('/api/v1/billing/usage/?service=review')
        assert [row['service_name'] for row in response.data['results']] == ['review']

    def test_subscription_requires_stripe_configuration(self, authenticated_client, settings):
        settings.STRIPE_SECRET_KEY = ''
        client, user = authenticated_client

        response = client.post('/api/v1/billing/subscription/')

        assert response.status_code == 503
        assert response.data['error'] == 'payments_not_configured'

    def test_cancel_without_subscription(self, authenticated_client):
        client, user = authenticated_client

        response = client.delete('/api/v1/billing/subscription/')

        assert response.status_code == 400
        assert response.data['error'] == 'no_subscription'


@pytest.mark.django_db
class TestStripeWebhook:

    @pytest.fixture
    def send_event(self, api_client, monkeypatch):
        def _send(event):
            gateway = SimpleNamespace(construct_event=lambda payload, sig_header: event)
            monkeypatch.setattr('billing.views.build_payment_gateway', lambda: gateway)
            return api_client.post(
                '/api/v1/billing/webhook/',
                data=b'{}',
                content_type='application/json',
                HTTP_STRIPE_SIGNATURE='t=1,v1=test',
            )
        return _send

    @pytest.fixture
    def customer(self, create_user):
        user = create_user(balance='0.50')
        user.stripe_customer_id = 'cus_123'
        user.subscription_status = 'trial'
        user.save()
        return user

    def test_invoice_paid_credits_balance(self, send_event, customer):
        event = {
            'type': 'invoice.paid',
            'data': {'object': {'id': 'in_1', 'customer': 'cus_123', 'amount_paid': 2900}},
        }

        response = send_event(event)

        assert response.status_code == 200
        customer.refresh_from_db()
        assert customer.token_balance == Decimal('29.50')
        assert customer.subscription_status == 'active'

    def test_invoice_paid_is_credited_once(self, send_event, customer):
        event = {
            'type': 'invoice.paid',
            'data': {'object': {'id': 'in_1', 'customer': 'cus_123', 'amount_paid': 1000}},
        }

        send_event(event)
        send_event(event)

        customer.refresh_from_db()
        assert customer.token_balance == Decimal('10.50')
        assert TokenUsage.objects.filter(user=customer, service_name='subscription_payment').count() == 1

    def test_zero_amount_trial_invoice(self, send_event, customer):
        event = {
            'type': 'invoice.paid',
            'data': {'object': {'id': 'in_0', 'customer': 'cus_123', 'amount_paid': 0}},
        }

        send_event(event)

        customer.refresh_from_db()
        assert customer.token_balance == Decimal('0.50')
        assert customer.subscription_status == 'trial'

    def test_payment_failed_marks_past_due(self, send_event, customer):
        send_event({'type': 'invoice.payment_failed', 'data': {'object': {'customer': 'cus_123'}}})

        customer.refresh_from_db()
        assert customer.subscription_status == 'past_due'

    def test_subscription_deleted(self, send_event, customer):
        send_event({'type': 'customer.subscription.deleted', 'data': {'object': {'customer': 'cus_123'}}})

        customer.refresh_from_db()
        assert customer.subscription_status == 'canceled'

    def test_invalid_payload(self, api_client, monkeypatch):
        def construct_event(payload, sig_header):
            raise ValueError('bad payload')
        gateway = SimpleNamespace(construct_event=construct_event)
        monkeypatch.setattr('billing.views.build_payment_gateway', lambda: gateway)

        response = api_client.post('/api/v1/billing/webhook/', data=b'nope', content_type='application/json')

        assert response.status_code == 400


@pytest.mark.django_db
class TestCreditBalanceCommand:

    def test_credits_user(self, create_user):
        user = create_user(balance='1.00')

        call_command('credit_balance', user.email, '4.00')

        user.refresh_from_db()
        assert user.token_balance == Decimal('5.00')
        assert TokenUsage.objects.get(user=user).service_name == 'admin_topup'

    def test_rejects_negative_amount(self, create_user):
        user = create_user()
        with pytest.raises(CommandError):
            call_command('credit_balance', user.email, '-1')

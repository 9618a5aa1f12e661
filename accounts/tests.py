"""
Tests for accounts app - User balance and subscription state.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone


@pytest.fixture
def user_model():
    return get_user_model()


@pytest.fixture
def create_user(user_model):
    def _create_user(email="test@example.com", password="testpass123"):
        return user_model.objects.create_user(
            email=email,
            username=email,
            password=password
        )
    return _create_user


@pytest.mark.django_db
class TestUser:

    def test_new_user_defaults(self, create_user):
        user = create_user()
        assert user.token_balance == Decimal('0')
        assert user.subscription_status == 'inactive'
        assert not user.has_active_subscription()

    def test_login_field_is_email(self, user_model):
        assert user_model.USERNAME_FIELD == 'email'

    def test_start_trial(self, create_user):
        user = create_user()
        user.start_trial(days=10)
        user.refresh_from_db()
        assert user.subscription_status == 'trial'
        assert user.is_trial_active()
        assert user.has_active_subscription()
        assert user.trial_ends_at - user.trial_started_at == timedelta(days=10)

    def test_expired_trial(self, create_user):
        user = create_user()
        user.subscription_status = 'trial'
        user.trial_ends_at = timezone.now() - timedelta(minutes=1)
        user.save()
        assert not user.is_trial_active()
        assert not user.has_active_subscription()

    def test_active_subscription(self, create_user):
        user = create_user()
        user.subscription_status = 'active'
        user.save()
        assert user.has_active_subscription()

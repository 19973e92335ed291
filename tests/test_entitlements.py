"""
Subscription state transitions and the paid-feature gate.
"""
import pytest

from db import User
from entitlements import (
    VERIFICATION_INACTIVE, SubscriptionState, apply_transition, derive_state, is_entitled, transition,
)

S = SubscriptionState


class TestTransition:

    @pytest.mark.parametrize("current", list(S))
    def test_trial_invoice_always_trialing(self, current):
        assert transition(current, "invoice.paid", {"amount_paid": 0}) == S.TRIALING

    def test_paid_invoice_paid_event_keeps_state(self):
        assert transition(S.ACTIVE, "invoice.paid", {"amount_paid": 4990}) == S.ACTIVE

    @pytest.mark.parametrize("current", [S.NONE, S.TRIALING, S.CANCELING, S.CANCELED])
    def test_finalized_paid_invoice_activates(self, current):
        assert transition(current, "invoice.finalized", {"amount_paid": 4990}) == S.ACTIVE

    def test_finalized_zero_invoice_keeps_state(self):
        assert transition(S.TRIALING, "invoice.finalized", {"amount_paid": 0}) == S.TRIALING

    def test_update_without_cancel_date_is_canceling(self):
        assert transition(S.ACTIVE, "customer.subscription.updated", {"status": "active"}) == S.CANCELING

    def test_update_with_canceled_at_is_canceled(self):
        obj = {"status": "active", "canceled_at": 1738000000}
        assert transition(S.ACTIVE, "customer.subscription.updated", obj) == S.CANCELED

    def test_verification_cancels(self):
        assert transition(S.ACTIVE, VERIFICATION_INACTIVE) == S.CANCELED

    def test_unknown_event_keeps_state(self):
        assert transition(S.ACTIVE, "charge.refunded", {}) == S.ACTIVE


class TestDeriveState:

    def test_explicit_column_wins(self):
        user = User(subscription_state="canceling", some_subscription_active=False)
        assert derive_state(user) == S.CANCELING

    @pytest.mark.parametrize("flags,expected", [
        ({}, S.NONE),
        ({"some_subscription_active": False, "canceled_subscription": True}, S.CANCELED),
        ({"some_subscription_active": True, "testing_subscription": True}, S.TRIALING),
        ({"some_subscription_active": True, "canceled_subscription": True}, S.CANCELING),
        ({"some_subscription_active": True}, S.ACTIVE),
    ])
    def test_legacy_flags(self, flags, expected):
        assert derive_state(User(**flags)) == expected

    def test_unknown_value_falls_back_to_flags(self):
        user = User(subscription_state="bogus", some_subscription_active=True)
        assert derive_state(user) == S.ACTIVE

    def test_apply_transition_persists_value(self):
        user = User()
        assert apply_transition(user, "invoice.paid", {"amount_paid": 0}) == S.TRIALING
        assert user.subscription_state == "trialing"

    @pytest.mark.parametrize("state,entitled", [
        ("none", False), ("trialing", True), ("active", True), ("canceling", True), ("canceled", False),
    ])
    def test_is_entitled(self, state, entitled):
        assert is_entitled(User(subscription_state=state)) is entitled

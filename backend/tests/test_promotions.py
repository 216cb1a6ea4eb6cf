"""
Promotion engine and promotion CRUD tests.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import window
from stellarpoints.errors import (
    AlreadyConsumed,
    AuthorizationError,
    InvalidPromotion,
    NotFound,
    ValidationError,
)
from stellarpoints.extensions import db
from stellarpoints.models import Promotion, PromotionConsumption, Transaction
from stellarpoints.services import ledger_service, promotions_service
from stellarpoints.time_utils import utcnow


def _promotion(manager, promo_type="onetime", *, start=timedelta(minutes=-59), end=timedelta(days=1), **amounts):
    start_time, end_time = window(start, end)
    data = {
        "name": f"{promo_type} promo",
        "description": "test promotion",
        "type": promo_type,
        "startTime": start_time,
        "endTime": end_time,
        **amounts,
    }
    return promotions_service.create_promotion(manager, data, now=utcnow() - timedelta(hours=1))


# =============================================================================
# ENGINE
# =============================================================================


class TestPromotionEngine:

    def test_bonus_combines_flat_points_and_rate(self, manager, alice):
        promo = _promotion(manager, "automatic", points=10, rate=0.25)

        outcome = promotions_service.applicable_promotions(alice, Decimal("9.99"), [], utcnow())

        assert outcome.applied_ids == [promo.id]
        assert outcome.automatic_bonus == 10 + 2
        assert outcome.one_time_bonus == 0
        assert outcome.consumed_ids == []

    def test_automatic_promotions_are_additive(self, manager, alice):
        _promotion(manager, "automatic", points=5)
        _promotion(manager, "automatic", points=7)
        outcome = promotions_service.applicable_promotions(alice, Decimal("1"), None, utcnow())
        assert outcome.automatic_bonus == 12

    def test_one_time_only_when_requested(self, manager, alice):
        promo = _promotion(manager, points=100)

        unrequested = promotions_service.applicable_promotions(alice, Decimal("5"), [], utcnow())
        requested = promotions_service.applicable_promotions(alice, Decimal("5"), [promo.id], utcnow())

        assert unrequested.one_time_bonus == 0
        assert requested.one_time_bonus == 100
        assert requested.consumed_ids == [promo.id]

    def test_one_time_is_per_account(self, manager, cashier, alice, bob):
        promo = _promotion(manager, points=100)

        first = ledger_service.create_purchase(cashier, alice.utorid, 10, [promo.id])
        assert first.amount == 110

        with pytest.raises(AlreadyConsumed):
            ledger_service.create_purchase(cashier, alice.utorid, 10, [promo.id])

        other = ledger_service.create_purchase(cashier, bob.utorid, 10, [promo.id])
        assert other.amount == 110
        assert alice.points == 110

    def test_invalid_id_fails_whole_purchase(self, manager, cashier, alice):
        good = _promotion(manager, points=100)
        before = db.session.query(Transaction).count()

        with pytest.raises(InvalidPromotion):
            ledger_service.create_purchase(cashier, alice.utorid, 10, [good.id, 99999])

        assert db.session.query(Transaction).count() == before
        assert db.session.query(PromotionConsumption).count() == 0
        assert alice.points == 0

    def test_min_spending_applies_to_one_time(self, manager, cashier, alice):
        promo = _promotion(manager, points=100, minSpending=50)
        with pytest.raises(InvalidPromotion):
            ledger_service.create_purchase(cashier, alice.utorid, 49, [promo.id])

    def test_expired_one_time_is_invalid(self, manager, alice):
        promo = _promotion(manager, points=1, start=timedelta(minutes=-50), end=timedelta(minutes=-10))
        with pytest.raises(InvalidPromotion):
            promotions_service.applicable_promotions(alice, Decimal("5"), [promo.id], utcnow())

    def test_automatic_id_cannot_be_requested(self, manager, alice):
        promo = _promotion(manager, "automatic", points=1)
        with pytest.raises(InvalidPromotion):
            promotions_service.applicable_promotions(alice, Decimal("5"), [promo.id], utcnow())

    def test_duplicate_request_is_invalid(self, manager, alice):
        promo = _promotion(manager, points=1)
        with pytest.raises(InvalidPromotion):
            promotions_service.applicable_promotions(alice, Decimal("5"), [promo.id, promo.id], utcnow())

    def test_available_onetime_excludes_consumed(self, manager, cashier, alice):
        used = _promotion(manager, points=1)
        unused = _promotion(manager, points=2)
        ledger_service.create_purchase(cashier, alice.utorid, 1, [used.id])

        available = promotions_service.available_onetime_promotions(alice.id)
        assert [p.id for p in available] == [unused.id]


# =============================================================================
# CRUD
# =============================================================================


class TestPromotionCrud:

    def test_create_requires_manager(self, cashier):
        start, end = window(timedelta(hours=1), timedelta(days=1))
        with pytest.raises(AuthorizationError):
            promotions_service.create_promotion(cashier, {
                "name": "x", "description": "x", "type": "automatic", "startTime": start, "endTime": end,
            })

    @pytest.mark.parametrize("amounts", [
        {"rate": 1001},
        {"minSpending": 10**7},
        {"points": 2**31},
    ])
    def test_amounts_above_column_range_are_rejected(self, manager, amounts):
        with pytest.raises(ValidationError):
            _promotion(manager, "automatic", **amounts)
        assert db.session.query(Promotion).count() == 0

    def test_rate_at_ceiling_is_accepted(self, manager):
        promo = _promotion(manager, "automatic", rate=1000)
        assert promo.rate == Decimal("1000")

    def test_start_must_not_be_in_past(self, manager):
        start, end = window(timedelta(hours=-1), timedelta(days=1))
        with pytest.raises(ValidationError):
            promotions_service.create_promotion(manager, {
                "name": "x", "description": "x", "type": "automatic", "startTime": start, "endTime": end,
            })

    def test_end_must_follow_start(self, manager):
        start, end = window(timedelta(days=2), timedelta(days=1))
        with pytest.raises(ValidationError):
            promotions_service.create_promotion(manager, {
                "name": "x", "description": "x", "type": "onetime", "startTime": start, "endTime": end,
            })

    def test_started_promotion_only_end_time_changes(self, manager):
        promo = _promotion(manager, points=5)

        with pytest.raises(ValidationError):
            promotions_service.update_promotion(manager, promo.id, {"points": 10})

        _, new_end = window(timedelta(0), timedelta(days=3))
        updated = promotions_service.update_promotion(manager, promo.id, {"endTime": new_end})
        assert updated.end_time.isoformat() == new_end

    def test_future_promotion_is_editable(self, manager):
        promo = _promotion(manager, points=5, start=timedelta(hours=2), end=timedelta(days=1))
        updated = promotions_service.update_promotion(manager, promo.id, {"points": 10, "name": "Bigger"})
        assert updated.points == 10
        assert updated.name == "Bigger"

    def test_delete_only_before_start(self, manager):
        started = _promotion(manager, points=5)
        future = _promotion(manager, points=5, start=timedelta(hours=2), end=timedelta(days=1))

        with pytest.raises(AuthorizationError):
            promotions_service.delete_promotion(manager, started.id)

        promotions_service.delete_promotion(manager, future.id)
        with pytest.raises(NotFound):
            promotions_service.get_promotion(manager, future.id)

    def test_regular_users_see_active_only(self, manager, alice):
        active = _promotion(manager, points=5)
        _promotion(manager, points=5, start=timedelta(hours=2), end=timedelta(days=1))

        count, rows = promotions_service.list_promotions(alice, {})
        assert count == 1
        assert rows[0].id == active.id

        count, _ = promotions_service.list_promotions(manager, {})
        assert count == 2

    def test_started_and_ended_are_exclusive(self, manager):
        with pytest.raises(ValidationError):
            promotions_service.list_promotions(manager, {"started": "true", "ended": "false"})

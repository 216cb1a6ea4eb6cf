"""
HTTP API tests.

Exercises the blueprints end to end through the Flask test client: bearer
auth, role gates, JSON error bodies and the main ledger flows.
"""

from datetime import timedelta

from conftest import PASSWORD, auth_headers, credit, get_auth_token, headers_for, make_account, window
from stellarpoints.errors import Conflict
from stellarpoints.extensions import db
from stellarpoints.models import Account, Event, Transaction
from stellarpoints.permissions import Role
from stellarpoints.services import event_service, ledger_service


def _error_shape(body):
    assert set(body) >= {"error", "code", "retryable"}
    assert isinstance(body["retryable"], bool)


class TestAuthEndpoints:

    def test_login_returns_token(self, client, alice):
        response = client.post('/api/auth/tokens', json={'utorid': alice.utorid, 'password': PASSWORD})
        assert response.status_code == 200
        assert response.json['token']
        assert response.json['expiresAt'].endswith('Z')

    def test_login_bad_password(self, client, alice):
        response = client.post('/api/auth/tokens', json={'utorid': alice.utorid, 'password': 'Wrong123!'})
        assert response.status_code == 401
        _error_shape(response.json)
        assert response.json['code'] == 'AuthenticationError'

    def test_missing_token(self, client, db_session):
        response = client.get('/api/users/me')
        assert response.status_code == 401
        _error_shape(response.json)

    def test_garbage_token(self, client, db_session):
        response = client.get('/api/users/me', headers=auth_headers('garbage'))
        assert response.status_code == 401

    def test_logout_revokes_token(self, client, alice):
        token = get_auth_token(client, alice.utorid)
        assert client.post('/api/auth/logout', headers=auth_headers(token)).status_code == 200
        assert client.get('/api/users/me', headers=auth_headers(token)).status_code == 401

    def test_reset_flow(self, client, alice):
        old_token = get_auth_token(client, alice.utorid)

        response = client.post('/api/auth/resets', json={'utorid': alice.utorid})
        assert response.status_code == 202
        reset_token = response.json['resetToken']

        response = client.post(f'/api/auth/resets/{reset_token}', json={
            'utorid': alice.utorid, 'password': 'Changed456?',
        })
        assert response.status_code == 200

        assert client.get('/api/users/me', headers=auth_headers(old_token)).status_code == 401
        assert get_auth_token(client, alice.utorid, 'Changed456?')

    def test_reset_rate_limited(self, client, alice, bob):
        assert client.post('/api/auth/resets', json={'utorid': alice.utorid}).status_code == 202

        response = client.post('/api/auth/resets', json={'utorid': bob.utorid})
        assert response.status_code == 429
        assert response.json['code'] == 'RateLimited'
        assert response.json['retryable'] is True
        assert response.json['retry_after_seconds'] >= 1

    def test_expired_reset_token(self, client, alice):
        reset_token = client.post('/api/auth/resets', json={'utorid': alice.utorid}).json['resetToken']
        db.session.expire_all()
        account = db.session.get(Account, alice.id)
        account.reset_expires_at = account.reset_expires_at - timedelta(hours=2)
        db.session.commit()

        response = client.post(f'/api/auth/resets/{reset_token}', json={
            'utorid': alice.utorid, 'password': 'Changed456?',
        })
        assert response.status_code == 410
        assert response.json['code'] == 'ResetTokenExpired'

    def test_unknown_reset_token(self, client, alice):
        response = client.post('/api/auth/resets/not-a-token', json={
            'utorid': alice.utorid, 'password': 'Changed456?',
        })
        assert response.status_code == 404


class TestUserEndpoints:

    def test_me(self, client, alice):
        response = client.get('/api/users/me', headers=headers_for(alice))
        assert response.status_code == 200
        assert response.json['utorid'] == alice.utorid
        assert response.json['role'] == 'regular'
        assert response.json['points'] == 0
        assert response.json['spendable'] == 0
        assert response.json['promotions'] == []

    def test_regular_cannot_list_users(self, client, alice):
        response = client.get('/api/users', headers=headers_for(alice))
        assert response.status_code == 403
        _error_shape(response.json)

    def test_manager_lists_users(self, client, manager, alice):
        response = client.get('/api/users?limit=1', headers=headers_for(manager))
        assert response.status_code == 200
        assert response.json['count'] == 2
        assert len(response.json['results']) == 1

    def test_cashier_creates_user(self, client, cashier):
        response = client.post('/api/users', headers=headers_for(cashier), json={
            'utorid': 'newuser1', 'name': 'New User', 'email': 'newuser1@mail.utoronto.ca',
        })
        assert response.status_code == 201
        assert response.json['verified'] is False
        assert response.json['resetToken']

    def test_duplicate_user_conflict(self, client, cashier, alice):
        response = client.post('/api/users', headers=headers_for(cashier), json={
            'utorid': alice.utorid, 'name': 'Dup', 'email': 'dup00001@mail.utoronto.ca',
        })
        assert response.status_code == 409
        assert response.json['code'] == 'DuplicateAccount'

    def test_cashier_sees_restricted_view(self, client, cashier, alice):
        response = client.get(f'/api/users/{alice.id}', headers=headers_for(cashier))
        assert response.status_code == 200
        assert 'email' not in response.json
        assert response.json['utorid'] == alice.utorid

    def test_manager_patch_returns_changed_fields(self, client, manager, alice):
        response = client.patch(f'/api/users/{alice.id}', headers=headers_for(manager), json={'suspicious': True})
        assert response.status_code == 200
        assert response.json['suspicious'] is True
        assert 'role' not in response.json

    def test_change_password(self, client, alice):
        response = client.patch('/api/users/me/password', headers=headers_for(alice), json={
            'old': PASSWORD, 'new': 'Changed456?',
        })
        assert response.status_code == 200
        assert get_auth_token(client, alice.utorid, 'Changed456?')


class TestLedgerEndpoints:

    def test_purchase(self, client, cashier, alice):
        response = client.post('/api/transactions', headers=headers_for(cashier), json={
            'utorid': alice.utorid, 'type': 'purchase', 'spent': 19.99,
        })
        assert response.status_code == 201
        assert response.json['type'] == 'purchase'
        assert response.json['earned'] == 19
        assert response.json['createdBy'] == cashier.utorid

        db.session.expire_all()
        assert db.session.get(Account, alice.id).points == 19

    def test_regular_cannot_purchase(self, client, alice, bob):
        response = client.post('/api/transactions', headers=headers_for(alice), json={
            'utorid': bob.utorid, 'type': 'purchase', 'spent': 10,
        })
        assert response.status_code == 403

    def test_cashier_cannot_adjust(self, client, cashier, alice):
        purchase = credit(cashier, alice, 10)
        response = client.post('/api/transactions', headers=headers_for(cashier), json={
            'utorid': alice.utorid, 'type': 'adjustment', 'amount': -5, 'relatedId': purchase.id,
        })
        assert response.status_code == 403

    def test_invalid_spent(self, client, cashier, alice):
        response = client.post('/api/transactions', headers=headers_for(cashier), json={
            'utorid': alice.utorid, 'type': 'purchase', 'spent': -1,
        })
        assert response.status_code == 400
        assert response.json['code'] == 'ValidationError'

    def test_transfer_by_id(self, client, cashier, alice, bob):
        credit(cashier, alice, 100)
        response = client.post(f'/api/users/{bob.id}/transactions', headers=headers_for(alice), json={
            'type': 'transfer', 'amount': 40, 'remark': 'lunch',
        })
        assert response.status_code == 201
        assert response.json['sender'] == alice.utorid
        assert response.json['recipient'] == bob.utorid
        assert response.json['sent'] == 40

        db.session.expire_all()
        assert db.session.get(Account, alice.id).points == 60
        assert db.session.get(Account, bob.id).points == 40

    def test_transfer_insufficient(self, client, alice, bob):
        response = client.post('/api/users/me/transactions/transfer', headers=headers_for(alice), json={
            'utorid': bob.utorid, 'amount': 1,
        })
        assert response.status_code == 400
        assert response.json['code'] == 'InsufficientBalance'

    def test_transfer_rejects_numeric_utorid(self, client, cashier, alice, bob):
        credit(cashier, alice, 20)
        response = client.post('/api/users/me/transactions/transfer', headers=headers_for(alice), json={
            'utorid': str(bob.id), 'amount': 5,
        })
        assert response.status_code == 400
        assert response.json['code'] == 'ValidationError'

        db.session.expire_all()
        assert db.session.get(Account, alice.id).points == 20
        assert db.session.get(Account, bob.id).points == 0

    def test_adjustment_amount_out_of_range(self, client, manager, cashier, alice):
        purchase = credit(cashier, alice, 10)
        response = client.post('/api/transactions', headers=headers_for(manager), json={
            'utorid': alice.utorid, 'type': 'adjustment', 'amount': 10**30, 'relatedId': purchase.id,
        })
        assert response.status_code == 400
        assert response.json['code'] == 'ValidationError'

        db.session.expire_all()
        assert db.session.get(Account, alice.id).points == 10

    def test_conflict_is_retryable_409(self, client, monkeypatch, cashier, alice):
        credit(cashier, alice, 20)

        def _lost_race(*args, **kwargs):
            raise Conflict()

        monkeypatch.setattr(ledger_service, 'create_redemption', _lost_race)
        response = client.post('/api/users/me/transactions', headers=headers_for(alice), json={
            'type': 'redemption', 'amount': 5,
        })
        assert response.status_code == 409
        assert response.json['code'] == 'Conflict'
        assert response.json['retryable'] is True

    def test_redeem_and_process(self, client, cashier, alice):
        credit(cashier, alice, 100)

        response = client.post('/api/users/me/transactions', headers=headers_for(alice), json={
            'type': 'redemption', 'amount': 30,
        })
        assert response.status_code == 201
        assert response.json['processed'] is False
        tx_id = response.json['id']

        me = client.get('/api/users/me', headers=headers_for(alice)).json
        assert me['points'] == 100
        assert me['spendable'] == 70

        cashier_headers = headers_for(cashier)
        response = client.patch(f'/api/transactions/{tx_id}/processed', headers=cashier_headers, json={'processed': True})
        assert response.status_code == 200
        assert response.json['processedBy'] == cashier.utorid

        response = client.patch(f'/api/transactions/{tx_id}/processed', headers=cashier_headers, json={'processed': True})
        assert response.status_code == 409
        assert response.json['code'] == 'AlreadyProcessed'

        db.session.expire_all()
        assert db.session.get(Account, alice.id).points == 70

    def test_flag_transaction(self, client, manager, cashier, alice):
        purchase = credit(cashier, alice, 50)

        response = client.patch(f'/api/transactions/{purchase.id}/suspicious', headers=headers_for(manager), json={
            'suspicious': True,
        })
        assert response.status_code == 200
        assert response.json['suspicious'] is True

        db.session.expire_all()
        assert db.session.get(Account, alice.id).points == 0

    def test_own_transactions(self, client, cashier, alice, bob):
        credit(cashier, alice, 10)
        credit(cashier, bob, 10)

        response = client.get('/api/users/me/transactions', headers=headers_for(alice))
        assert response.status_code == 200
        assert response.json['count'] == 1
        assert response.json['results'][0]['utorid'] == alice.utorid

    def test_cashier_lists_only_own_rows(self, client, cashier, alice):
        other = make_account("cashie02", Role.CASHIER)
        credit(cashier, alice, 10)
        credit(other, alice, 10)

        response = client.get('/api/transactions', headers=headers_for(cashier))
        assert response.status_code == 200
        assert response.json['count'] == 1

    def test_transaction_detail_is_manager_only(self, client, cashier, manager, alice):
        purchase = credit(cashier, alice, 10)
        assert client.get(f'/api/transactions/{purchase.id}', headers=headers_for(cashier)).status_code == 403
        response = client.get(f'/api/transactions/{purchase.id}', headers=headers_for(manager))
        assert response.status_code == 200
        assert response.json['spent'] == 10.0


class TestEventEndpoints:

    def _create(self, client, manager, **overrides):
        start, end = window(timedelta(hours=1), timedelta(days=1))
        body = {
            'name': 'Games Night', 'description': 'Board games', 'location': 'SS 1001',
            'startTime': start, 'endTime': end, 'points': 100,
        }
        body.update(overrides)
        return client.post('/api/events', headers=headers_for(manager), json=body)

    def test_create_and_publish(self, client, manager, alice):
        response = self._create(client, manager, capacity=1)
        assert response.status_code == 201
        event_id = response.json['id']
        assert response.json['published'] is False

        assert client.get(f'/api/events/{event_id}', headers=headers_for(alice)).status_code == 404

        response = client.patch(f'/api/events/{event_id}', headers=headers_for(manager), json={'published': True})
        assert response.status_code == 200
        assert client.get(f'/api/events/{event_id}', headers=headers_for(alice)).status_code == 200

    def test_rsvp_capacity_returns_410(self, client, manager, alice, bob):
        event_id = self._create(client, manager, capacity=1).json['id']
        client.patch(f'/api/events/{event_id}', headers=headers_for(manager), json={'published': True})

        assert client.post(f'/api/events/{event_id}/guests/me', headers=headers_for(alice)).status_code == 201
        response = client.post(f'/api/events/{event_id}/guests/me', headers=headers_for(bob))
        assert response.status_code == 410
        assert response.json['code'] == 'CapacityExceeded'

    def test_award_all_guests(self, client, manager, alice, bob):
        event_id = self._create(client, manager).json['id']
        event_service.add_guest(manager, event_id, alice.utorid)
        event_service.add_guest(manager, event_id, bob.utorid)

        response = client.post(f'/api/events/{event_id}/transactions', headers=headers_for(manager), json={
            'type': 'event', 'amount': 20,
        })
        assert response.status_code == 201
        assert sorted(row['recipient'] for row in response.json) == sorted([alice.utorid, bob.utorid])

        response = client.post(f'/api/events/{event_id}/transactions', headers=headers_for(manager), json={
            'type': 'event', 'amount': 50,
        })
        assert response.status_code == 400
        assert response.json['code'] == 'InsufficientEventBudget'

        db.session.expire_all()
        assert db.session.query(Transaction).count() == 2

    def test_event_points_out_of_range(self, client, manager):
        response = self._create(client, manager, points=10**30)
        assert response.status_code == 400
        assert response.json['code'] == 'ValidationError'
        assert db.session.query(Event).count() == 0

    def test_regular_cannot_create_event(self, client, alice):
        response = self._create(client, alice)
        assert response.status_code == 403


class TestPromotionEndpoints:

    def test_create_and_delete(self, client, manager):
        start, end = window(timedelta(hours=1), timedelta(days=1))
        response = client.post('/api/promotions', headers=headers_for(manager), json={
            'name': 'Double Up', 'description': 'x', 'type': 'automatic',
            'startTime': start, 'endTime': end, 'rate': 0.01,
        })
        assert response.status_code == 201
        promotion_id = response.json['id']

        response = client.delete(f'/api/promotions/{promotion_id}', headers=headers_for(manager))
        assert response.status_code == 204

    def test_rate_above_ceiling_is_rejected(self, client, manager):
        start, end = window(timedelta(hours=1), timedelta(days=1))
        response = client.post('/api/promotions', headers=headers_for(manager), json={
            'name': 'Jackpot', 'description': 'x', 'type': 'automatic',
            'startTime': start, 'endTime': end, 'rate': 10**12,
        })
        assert response.status_code == 400
        assert response.json['code'] == 'ValidationError'

    def test_regular_cannot_create(self, client, alice):
        start, end = window(timedelta(hours=1), timedelta(days=1))
        response = client.post('/api/promotions', headers=headers_for(alice), json={
            'name': 'x', 'description': 'x', 'type': 'automatic', 'startTime': start, 'endTime': end,
        })
        assert response.status_code == 403


class TestHealth:

    def test_health(self, client, db_session):
        response = client.get('/api/health')
        assert response.status_code == 200
        assert response.json['status'] == 'ok'
        assert response.json['database']['status'] == 'healthy'

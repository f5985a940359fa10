"""
HTTP API tests.

Exercise the blueprints through the Flask test client with identity headers.
"""

from pos_engine.models import Sale
from pos_engine.services.inventory_service import get_quantity_on_hand


def identity_headers(tenant_id, user_id, store_id=None):
    """Headers set by the upstream identity layer."""
    headers = {'X-Tenant-Id': str(tenant_id), 'X-User-Id': str(user_id)}
    if store_id is not None:
        headers['X-Store-Id'] = str(store_id)
    return headers


class TestHealth:
    def test_health_reports_database(self, client, db_session):
        response = client.get('/api/health')

        assert response.status_code == 200
        assert response.json['status'] == 'healthy'
        assert response.json['checks']['database']['status'] == 'healthy'


class TestIdentity:
    def test_missing_identity_headers(self, client, db_session):
        response = client.post('/api/sales', json={})

        assert response.status_code == 401

    def test_malformed_tenant_header(self, client, db_session):
        response = client.get('/api/sales', headers={'X-Tenant-Id': 'abc', 'X-User-Id': '1'})

        assert response.status_code == 401

    def test_sale_requires_store(self, client, tenant, cashier):
        response = client.post('/api/sales', json={}, headers=identity_headers(tenant.id, cashier.id))

        assert response.status_code == 400


class TestSalesRoutes:
    def test_post_sale(self, client, db_session, tenant, store, cashier, make_product, make_tax):
        product = make_product(price_cents=1000, stock=5)
        make_tax(1000)

        response = client.post(
            '/api/sales',
            json={
                'items': [{'product_id': product.id, 'quantity': 2}],
                'payments': [{'method': 'CASH', 'amount_cents': 2500}],
            },
            headers=identity_headers(tenant.id, cashier.id, store.id),
        )

        assert response.status_code == 201
        sale = response.json['sale']
        assert sale['total_cents'] == 2200
        assert sale['change_given_cents'] == 300
        assert sale['items'][0]['price_at_sale_cents'] == 1000
        assert sale['payments'][0]['amount_cents'] == 2500
        assert get_quantity_on_hand(db_session, store.id, product.id) == 3

    def test_invalid_body(self, client, tenant, store, cashier):
        response = client.post(
            '/api/sales',
            json={'items': [{'product_id': 1, 'quantity': 'two'}], 'payment_method': 'CASH'},
            headers=identity_headers(tenant.id, cashier.id, store.id),
        )

        assert response.status_code == 400

    def test_insufficient_stock_is_conflict(self, client, db_session, tenant, store, cashier, make_product):
        product = make_product(stock=1)

        response = client.post(
            '/api/sales',
            json={'items': [{'product_id': product.id, 'quantity': 2}], 'payment_method': 'CASH'},
            headers=identity_headers(tenant.id, cashier.id, store.id),
        )

        assert response.status_code == 409
        assert response.json['code'] == 'INSUFFICIENT_STOCK'
        assert response.json['details']['available'] == 1
        assert db_session.query(Sale).count() == 0

    def test_unknown_product_is_not_found(self, client, tenant, store, cashier):
        response = client.post(
            '/api/sales',
            json={'items': [{'product_id': 424242, 'quantity': 1}], 'payment_method': 'CASH'},
            headers=identity_headers(tenant.id, cashier.id, store.id),
        )

        assert response.status_code == 404

    def test_get_and_list_sales(self, client, tenant, store, cashier, make_product, other_tenant):
        product = make_product(stock=5)
        headers = identity_headers(tenant.id, cashier.id, store.id)
        created = client.post(
            '/api/sales',
            json={'items': [{'product_id': product.id, 'quantity': 1}], 'payment_method': 'CARD'},
            headers=headers,
        ).json['sale']

        fetched = client.get(f"/api/sales/{created['id']}", headers=headers)
        listed = client.get('/api/sales', headers=headers)
        foreign = client.get(f"/api/sales/{created['id']}", headers=identity_headers(other_tenant.id, cashier.id))

        assert fetched.status_code == 200
        assert fetched.json['sale']['payment_method'] == 'CARD'
        assert [s['id'] for s in listed.json['sales']] == [created['id']]
        assert foreign.status_code == 404

    def test_list_limit_is_clamped_to_at_least_one(self, client, tenant, store, cashier, make_product):
        product = make_product(stock=5)
        headers = identity_headers(tenant.id, cashier.id, store.id)
        for _ in range(3):
            client.post(
                '/api/sales',
                json={'items': [{'product_id': product.id, 'quantity': 1}], 'payment_method': 'CASH'},
                headers=headers,
            )

        negative = client.get('/api/sales?limit=-1', headers=headers)
        zero = client.get('/api/sales?limit=0', headers=headers)
        two = client.get('/api/sales?limit=2', headers=headers)

        assert len(negative.json['sales']) == 1
        assert len(zero.json['sales']) == 1
        assert len(two.json['sales']) == 2


class TestTillRoutes:
    def test_session_lifecycle(self, client, tenant, store, cashier):
        headers = identity_headers(tenant.id, cashier.id, store.id)

        till = client.post('/api/tills', json={'name': 'Front Counter'}, headers=headers)
        assert till.status_code == 201
        till_id = till.json['till']['id']

        opened = client.post(f'/api/tills/{till_id}/open', json={'opening_float_cents': 5000}, headers=headers)
        assert opened.status_code == 201
        session_id = opened.json['session']['id']

        again = client.post(f'/api/tills/{till_id}/open', json={'opening_float_cents': 0}, headers=headers)
        assert again.status_code == 409

        cash = client.post(
            f'/api/tills/sessions/{session_id}/cash',
            json={'type': 'CASH_OUT', 'amount_cents': 1000, 'reason': 'Safe drop'},
            headers=headers,
        )
        assert cash.status_code == 201
        assert cash.json['cash_transaction']['transaction_type'] == 'CASH_OUT'

        active = client.get('/api/tills/sessions/active', headers=headers)
        assert active.json['session']['id'] == session_id

        summary = client.get(f'/api/tills/sessions/{session_id}/summary', headers=headers)
        assert summary.json['totals']['expected_cash_cents'] == 4000

        closed = client.post(
            f'/api/tills/sessions/{session_id}/close', json={'closing_cash_cents': 3900}, headers=headers
        )
        assert closed.status_code == 200
        assert closed.json['session']['status'] == 'CLOSED'
        assert closed.json['session']['variance_cents'] == -100

        history = client.get(f'/api/tills/{till_id}/sessions', headers=headers)
        assert [s['id'] for s in history.json['sessions']] == [session_id]
        assert history.json['sessions'][0]['user_name'] == 'Casey Cashier'

    def test_cash_on_closed_session_rejected(self, client, tenant, store, cashier, till, till_service):
        till_session = till_service.open_session(till.id, cashier.id, 0)
        till_service.close_session(till_session.id, 0)

        response = client.post(
            f'/api/tills/sessions/{till_session.id}/cash',
            json={'type': 'CASH_IN', 'amount_cents': 100},
            headers=identity_headers(tenant.id, cashier.id, store.id),
        )

        assert response.status_code == 400
        assert response.json['code'] == 'INVALID_TILL_SESSION'

    def test_open_requires_float(self, client, tenant, store, cashier, till):
        response = client.post(
            f'/api/tills/{till.id}/open', json={}, headers=identity_headers(tenant.id, cashier.id, store.id)
        )

        assert response.status_code == 400

    def test_duplicate_till_name(self, client, tenant, store, cashier, till):
        response = client.post(
            '/api/tills', json={'name': 'Till 1'}, headers=identity_headers(tenant.id, cashier.id, store.id)
        )

        assert response.status_code == 409

    def test_rename_and_delete(self, client, tenant, store, cashier, till):
        headers = identity_headers(tenant.id, cashier.id, store.id)

        renamed = client.patch(f'/api/tills/{till.id}', json={'name': 'Back Office'}, headers=headers)
        deleted = client.delete(f'/api/tills/{till.id}', headers=headers)
        listed = client.get('/api/tills', headers=headers)

        assert renamed.json['till']['name'] == 'Back Office'
        assert deleted.json == {'deleted': True}
        assert listed.json['tills'] == []


class TestTillReportRoutes:
    def test_reports_for_store(self, client, tenant, store, cashier, till, till_service, make_product):
        product = make_product(price_cents=800, stock=5)
        headers = identity_headers(tenant.id, cashier.id, store.id)
        till_session = till_service.open_session(till.id, cashier.id, 1000)
        client.post(
            '/api/sales',
            json={
                'items': [{'product_id': product.id, 'quantity': 1}],
                'payment_method': 'CASH',
                'till_session_id': till_session.id,
            },
            headers=headers,
        )

        dashboard = client.get('/api/till-reports/dashboard', headers=headers)
        payments = client.get('/api/till-reports/payments', headers=headers)
        inventory = client.get(f'/api/till-reports/inventory?till_id={till.id}', headers=headers)

        assert dashboard.status_code == 200
        assert dashboard.json['sales']['transaction_count'] == 1
        assert payments.json == [{'method': 'CASH', 'amount_cents': 800, 'count': 1}]
        assert inventory.json[0]['quantity_sold'] == 1

    def test_bad_range(self, client, tenant, store, cashier):
        response = client.get(
            '/api/till-reports/exceptions?from=2026-02-01T00:00:00Z&to=2026-01-01T00:00:00Z',
            headers=identity_headers(tenant.id, cashier.id, store.id),
        )

        assert response.status_code == 400

    def test_requires_store(self, client, tenant, cashier):
        response = client.get('/api/till-reports/dashboard', headers=identity_headers(tenant.id, cashier.id))

        assert response.status_code == 400

import pytest

from splitledger.models import Membership


def post(client, url, **payload):
    return client.post(url, json=payload)


@pytest.fixture
def flat(client):
    """Alice owns a group with Bob and Charlie; returns (group_id, a, b, c)."""
    ids = []
    for name in ('Alice', 'Bob', 'Charlie'):
        rv = post(client, '/api/users', email=f'{name.lower()}@example.com', name=name)
        assert rv.status_code == 201
        ids.append(rv.get_json()['id'])
    a, b, c = ids

    rv = post(client, '/api/groups', name='Flat', created_by=a)
    assert rv.status_code == 201
    group_id = rv.get_json()['id']

    for user_id in (b, c):
        assert post(client, f'/api/groups/{group_id}/members', user_id=user_id).status_code == 201

    return group_id, a, b, c


class TestGroups:

    def test_view_group_with_balances(self, client, flat):
        group_id, a, b, c = flat
        post(client, f'/api/groups/{group_id}/expenses',
             title='Internet', payer_id=a, split='equal', amount='90', user_ids=[a, b, c])

        data = client.get(f'/api/groups/{group_id}').get_json()

        assert data['name'] == 'Flat'
        assert [m['user']['name'] for m in data['members']] == ['Alice', 'Bob', 'Charlie']
        assert data['balances'] == {str(a): '60.00', str(b): '-30.00', str(c): '-30.00'}

    def test_unknown_group_is_404(self, client):
        rv = client.get('/api/groups/999')

        assert rv.status_code == 404
        assert 'error' in rv.get_json()

    def test_duplicate_email_is_409(self, client, flat):
        rv = post(client, '/api/users', email='ALICE@example.com')

        assert rv.status_code == 409

    def test_missing_fields_is_400(self, client):
        rv = post(client, '/api/groups', created_by=1)

        assert rv.status_code == 400
        assert rv.get_json()['error'] == 'Missing fields: name'

    def test_non_object_body_is_400(self, client):
        rv = client.post('/api/groups', json=['Flat'])

        assert rv.status_code == 400

    def test_remove_member_with_balance_is_409(self, client, flat):
        group_id, a, b, c = flat
        post(client, f'/api/groups/{group_id}/expenses',
             title='Internet', payer_id=a, split='equal', amount='90', user_ids=[a, b, c])

        rv = client.delete(f'/api/groups/{group_id}/members/{b}', json={'removed_by': a})

        assert rv.status_code == 409
        assert rv.get_json()['error'] == 'Cannot remove member. They owe 30.00.'

    def test_remove_settled_member(self, client, flat):
        group_id, a, b, c = flat

        rv = client.delete(f'/api/groups/{group_id}/members/{c}')

        assert rv.status_code == 200
        members = client.get(f'/api/groups/{group_id}/members').get_json()
        assert [m['user']['id'] for m in members] == [a, b]

    def test_delete_group(self, client, flat):
        group_id = flat[0]

        assert client.delete(f'/api/groups/{group_id}').status_code == 200
        assert client.get(f'/api/groups/{group_id}').status_code == 404

    def test_activity_after_removal(self, client, flat):
        group_id, a, b, c = flat
        assert client.get(f'/api/groups/{group_id}/activity').get_json() == []

        client.delete(f'/api/groups/{group_id}/members/{c}', json={'removed_by': a})

        entries = client.get(f'/api/groups/{group_id}/activity').get_json()
        assert [(e['type'], e['actor']['id'], e['payload']) for e in entries] == [
            ('member.removed', a, {'target_user_id': c})
        ]

    def test_activity_of_unknown_group_is_404(self, client):
        assert client.get('/api/groups/999/activity').status_code == 404


class TestExpenses:

    def test_exact_split_with_tax(self, client, flat):
        group_id, a, b, c = flat

        rv = post(client, f'/api/groups/{group_id}/expenses',
                  title='Dinner', payer_id=b, tax_amount='3',
                  participants=[{'user_id': a, 'share_amount': '20'},
                                {'user_id': c, 'share_amount': '10'}])

        assert rv.status_code == 201
        expense = rv.get_json()
        assert expense['total_amount'] == '33.00'
        assert expense['tax_amount'] == '3.00'
        assert [(s['user']['id'], s['share_amount']) for s in expense['shares']] == [
            (a, '21.50'), (c, '11.50')
        ]

    def test_total_that_does_not_match_is_422(self, client, flat):
        group_id, a, b, c = flat

        rv = post(client, f'/api/groups/{group_id}/expenses',
                  title='Dinner', payer_id=a, total_amount='100',
                  participants=[{'user_id': a, 'share_amount': '50'},
                                {'user_id': b, 'share_amount': '40'}])

        assert rv.status_code == 422
        assert client.get(f'/api/groups/{group_id}/expenses').get_json() == []

    def test_non_member_is_404(self, client, flat):
        group_id, a, b, c = flat

        rv = post(client, f'/api/groups/{group_id}/expenses',
                  title='Dinner', payer_id=a,
                  participants=[{'user_id': 999, 'share_amount': '5'}])

        assert rv.status_code == 404

    def test_edit_and_delete(self, client, flat):
        group_id, a, b, c = flat
        expense_id = post(client, f'/api/groups/{group_id}/expenses',
                          title='Taxi', payer_id=a, split='equal',
                          amount='20', user_ids=[a, b]).get_json()['id']

        rv = client.put(f'/api/groups/{group_id}/expenses/{expense_id}',
                        json={'payer_id': c, 'title': 'Cab'})
        assert rv.status_code == 200
        assert rv.get_json()['payer']['id'] == c

        balances = client.get(f'/api/groups/{group_id}').get_json()['balances']
        assert balances == {str(a): '-10.00', str(b): '-10.00', str(c): '20.00'}

        assert client.delete(f'/api/groups/{group_id}/expenses/{expense_id}').status_code == 200
        balances = client.get(f'/api/groups/{group_id}').get_json()['balances']
        assert set(balances.values()) == {'0.00'}

    @pytest.mark.parametrize('split', [
        {'participants': [{'user_id': 'abc', 'share_amount': '5'}]},
        {'participants': [{'user_id': 1}]},
        {'participants': ['Alice']},
        {'participants': {'user_id': 1, 'share_amount': '5'}},
        {'split': 'equal', 'amount': '10', 'user_ids': '12'},
        {'split': 'equal', 'amount': '10', 'user_ids': [1, 'x']},
        {'split': 'equal', 'amount': '10', 'user_ids': []},
    ])
    def test_malformed_split_is_400(self, client, flat, split):
        group_id, a, b, c = flat

        rv = post(client, f'/api/groups/{group_id}/expenses', title='Dinner', payer_id=a, **split)

        assert rv.status_code == 400
        assert 'error' in rv.get_json()
        assert client.get(f'/api/groups/{group_id}/expenses').get_json() == []

    def test_items_round_trip(self, client, flat):
        group_id, a, b, c = flat

        rv = post(client, f'/api/groups/{group_id}/expenses',
                  title='Groceries', payer_id=a, split='equal', amount='10', user_ids=[a, b],
                  items=[{'name': 'Eggs', 'price': '3', 'quantity': 2}, {'name': 'Tea', 'price': '4'}])
        assert rv.status_code == 201
        expense_id = rv.get_json()['id']

        items = client.get(f'/api/groups/{group_id}/expenses/{expense_id}').get_json()['items']
        assert items == [
            {'name': 'Eggs', 'price': '3.00', 'quantity': 2},
            {'name': 'Tea', 'price': '4.00', 'quantity': 1},
        ]

        rv = client.put(f'/api/groups/{group_id}/expenses/{expense_id}',
                        json={'items': [{'name': 'Eggs', 'price': '3', 'quantity': 0}]})
        assert rv.status_code == 400

    def test_tax_only_edit_is_400(self, client, flat):
        group_id, a, b, c = flat
        expense_id = post(client, f'/api/groups/{group_id}/expenses',
                          title='Dinner', payer_id=a, tax_amount='2',
                          participants=[{'user_id': a, 'share_amount': '10'},
                                        {'user_id': b, 'share_amount': '10'}]).get_json()['id']

        rv = client.put(f'/api/groups/{group_id}/expenses/{expense_id}', json={'tax_amount': '50'})

        assert rv.status_code == 400
        expense = client.get(f'/api/groups/{group_id}/expenses/{expense_id}').get_json()
        assert expense['tax_amount'] == '2.00'
        assert expense['total_amount'] == '22.00'


class TestPayments:

    def test_duplicate_submission_is_409(self, client, flat):
        group_id, a, b, c = flat

        first = post(client, f'/api/groups/{group_id}/payments', from_id=b, to_id=a, amount='25')
        second = post(client, f'/api/groups/{group_id}/payments', from_id=b, to_id=a, amount='25')

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.get_json()['error'] == \
            'This payment was just recorded. Please wait a few seconds.'
        assert len(client.get(f'/api/groups/{group_id}/payments').get_json()) == 1

    def test_self_payment_is_400(self, client, flat):
        group_id, a, b, c = flat

        rv = post(client, f'/api/groups/{group_id}/payments', from_id=a, to_id=a, amount='5')

        assert rv.status_code == 400

    def test_bad_ids_are_400(self, client, flat):
        group_id = flat[0]

        rv = post(client, f'/api/groups/{group_id}/payments', from_id='x', to_id=1, amount='5')

        assert rv.status_code == 400

    def test_edit_and_delete(self, client, flat):
        group_id, a, b, c = flat
        payment_id = post(client, f'/api/groups/{group_id}/payments',
                          from_id=b, to_id=a, amount='25').get_json()['id']

        rv = client.put(f'/api/groups/{group_id}/payments/{payment_id}', json={'amount': '30'})
        assert rv.get_json()['amount'] == '30.00'

        assert client.delete(f'/api/groups/{group_id}/payments/{payment_id}').status_code == 200
        assert client.get(f'/api/groups/{group_id}/payments').get_json() == []

    def test_pay_a_share(self, client, flat):
        group_id, a, b, c = flat
        expense_id = post(client, f'/api/groups/{group_id}/expenses',
                          title='Internet', payer_id=a, split='equal',
                          amount='90', user_ids=[a, b, c]).get_json()['id']
        url = f'/api/groups/{group_id}/payments'

        rv = post(client, url, from_id=b, to_id=a, amount='30',
                  expense_id=expense_id, share_user_id=b)
        assert rv.status_code == 201
        assert rv.get_json()['expense_share'] == {'expense_id': expense_id, 'user_id': b}

        shares = client.get(f'/api/groups/{group_id}/expenses/{expense_id}').get_json()['shares']
        paid = {s['user']['id']: s['paid_at'] is not None for s in shares}
        assert paid == {a: False, b: True, c: False}

        again = post(client, url, from_id=b, to_id=a, amount='31',
                     expense_id=expense_id, share_user_id=b)
        assert again.status_code == 409
        assert again.get_json()['error'] == 'This share has already been paid'

        missing = post(client, url, from_id=c, to_id=a, amount='30',
                       expense_id=expense_id + 1, share_user_id=c)
        assert missing.status_code == 404
        assert len(client.get(url).get_json()) == 1


class TestSettlements:

    def test_suggest_then_settle(self, client, flat):
        group_id, a, b, c = flat
        post(client, f'/api/groups/{group_id}/expenses',
             title='Groceries', payer_id=a, split='equal', amount='100', user_ids=[a, b, c])

        data = client.get(f'/api/groups/{group_id}/settlements').get_json()

        assert data == {'settlements': [
            {'from': {'id': b, 'name': 'Bob'}, 'to': {'id': a, 'name': 'Alice'}, 'amount': '33.33'},
            {'from': {'id': c, 'name': 'Charlie'}, 'to': {'id': a, 'name': 'Alice'}, 'amount': '33.33'},
        ]}

        rv = client.post(f'/api/groups/{group_id}/settlements')
        assert rv.status_code == 200
        assert rv.get_json()['count'] == 2

        assert client.get(f'/api/groups/{group_id}/settlements').get_json() == {'settlements': []}

    def test_mark_paid(self, client, flat):
        group_id, a, b, c = flat
        post(client, f'/api/groups/{group_id}/expenses',
             title='Taxi', payer_id=a, split='equal', amount='20', user_ids=[a, b])

        rv = post(client, f'/api/groups/{group_id}/settlements/mark-paid',
                  from_id=b, to_id=a, amount='10.00')

        assert rv.status_code == 201
        assert rv.get_json()['note'] == 'Settlement transfer'
        assert client.get(f'/api/groups/{group_id}/settlements').get_json() == {'settlements': []}

    def test_unknown_group(self, client):
        assert client.get('/api/groups/5/settlements').status_code == 404


class TestAdmin:

    def test_drift_and_repair(self, client, db, flat):
        group_id, a, b, c = flat
        post(client, f'/api/groups/{group_id}/expenses',
             title='Taxi', payer_id=a, split='equal', amount='20', user_ids=[a, b])

        clean = client.get('/api/admin/balances/drift').get_json()
        assert clean['total_discrepancies'] == 0
        assert clean['message'] == 'All balances are correct!'

        membership = Membership.query.filter_by(group_id=group_id, user_id=b).one()
        membership.net_balance = 0
        db.session.commit()

        drift = client.get(f'/api/admin/balances/drift?group_id={group_id}').get_json()
        assert drift['total_discrepancies'] == 1
        assert drift['results'][0]['discrepancies'][0] == {
            'user_id': b, 'name': 'Bob',
            'stored': '0.00', 'computed': '-10.00', 'difference': '-10.00',
        }

        rv = post(client, '/api/admin/balances/repair', group_id=group_id)
        assert rv.get_json()['message'] == 'Repaired 1 balance(s) across 1 group(s)'
        assert client.get('/api/admin/balances/drift').get_json()['total_discrepancies'] == 0

    def test_repair_without_groups_is_404(self, client):
        assert client.post('/api/admin/balances/repair').status_code == 404

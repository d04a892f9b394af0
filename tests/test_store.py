from ledger.models import Address, Client, ClientStatus, HistoryAction, HistoryEntry, Plan

from conftest import NOW

DAY = 86400


def make_client(plan_id="monthly", days=30, status=ClientStatus.ACTIVE, name="Ana"):
    return Client(
        name=name,
        plan_id=plan_id,
        purchase_date=NOW - DAY,
        renewal_date=NOW + days * DAY,
        status=status,
    )


def test_plan_round_trip(store):
    plan = Plan(id="p1", name="Monthly Premium", duration_months=1, price=49.90,
                features=["4K", "Priority queue"])
    store.save_plan(plan)

    loaded = store.get_plan("p1")
    assert loaded == plan
    assert store.get_plan("missing") is None


def test_plan_update_and_active_filter(store, plans):
    retired = plans["quarterly"]
    retired.is_active = False
    store.save_plan(retired)

    assert [p.id for p in store.list_plans()] == ["monthly", "quarterly", "yearly"]
    assert [p.id for p in store.list_plans(active_only=True)] == ["monthly", "yearly"]


def test_client_round_trip(store, plans):
    client = make_client()
    client.email = "ana@example.com"
    client.address = Address(city="Campinas", state="SP")
    store.save_client(client)

    loaded = store.get_client(client.id)
    assert loaded.name == "Ana"
    assert loaded.status is ClientStatus.ACTIVE
    assert loaded.address.city == "Campinas"
    assert loaded.email == "ana@example.com"
    assert store.get_client("missing") is None


def test_save_client_updates_in_place(store, plans):
    client = make_client()
    store.save_client(client)
    first_update = client.updated_at

    client.status = ClientStatus.SUSPENDED
    store.save_client(client)

    loaded = store.get_client(client.id)
    assert loaded.status is ClientStatus.SUSPENDED
    assert loaded.updated_at >= first_update
    assert store.count_clients() == 1


def test_set_client_status_only_when_unchanged(store, plans):
    client = make_client(days=3)
    client.notes = "VIP"
    store.save_client(client)
    snapshot = store.get_client(client.id)

    assert store.set_client_status(snapshot, ClientStatus.NEEDS_RENEWAL)
    loaded = store.get_client(client.id)
    assert loaded.status is ClientStatus.NEEDS_RENEWAL
    assert loaded.notes == "VIP"

    # stale snapshot: status already moved on
    assert not store.set_client_status(snapshot, ClientStatus.NEEDS_RENEWAL)


def test_set_client_status_skips_renewed_row(store, plans):
    client = make_client(days=3)
    store.save_client(client)
    snapshot = store.get_client(client.id)

    client.renewal_date = NOW + 30 * DAY
    store.save_client(client)

    assert not store.set_client_status(snapshot, ClientStatus.NEEDS_RENEWAL)
    assert store.get_client(client.id).status is ClientStatus.ACTIVE


def test_list_and_count_filters(store, plans):
    store.save_client(make_client(days=20, name="Later"))
    store.save_client(make_client(days=2, name="Soon"))
    store.save_client(make_client(days=1, status=ClientStatus.NEEDS_RENEWAL, name="Due"))
    store.save_client(make_client(days=5, status=ClientStatus.CANCELLED, name="Gone"))

    assert [c.name for c in store.list_clients()] == ["Due", "Soon", "Gone", "Later"]
    assert [c.name for c in store.list_clients(status=ClientStatus.ACTIVE)] == ["Soon", "Later"]

    open_soon = store.list_clients(
        statuses=(ClientStatus.ACTIVE, ClientStatus.NEEDS_RENEWAL),
        renewal_before=NOW + 7 * DAY,
    )
    assert [c.name for c in open_soon] == ["Due", "Soon"]

    assert store.count_clients() == 4
    assert store.count_clients(status=ClientStatus.CANCELLED) == 1
    assert store.count_clients(renewal_before=NOW + 3 * DAY) == 2


def test_sum_plan_price(store, plans):
    store.save_client(make_client(plan_id="monthly"))
    store.save_client(make_client(plan_id="yearly"))
    store.save_client(make_client(plan_id="yearly", status=ClientStatus.SUSPENDED))

    assert round(store.sum_plan_price(ClientStatus.ACTIVE), 2) == 529.80
    assert store.sum_plan_price(ClientStatus.CANCELLED) == 0.0


def test_history_newest_first(store, plans):
    client = make_client()
    store.save_client(client)
    store.add_history(HistoryEntry(client_id=client.id, action=HistoryAction.CREATED,
                                   actor="admin", created_at=NOW))
    entry = store.add_history(HistoryEntry(
        client_id=client.id,
        action=HistoryAction.SUSPENDED,
        actor="admin",
        old_values={"status": "active"},
        new_values={"status": "suspended", "reason": "chargeback"},
        created_at=NOW + 60,
    ))

    assert entry.id is not None
    history = store.list_history(client.id)
    assert [h.action for h in history] == [HistoryAction.SUSPENDED, HistoryAction.CREATED]
    assert history[0].new_values["reason"] == "chargeback"
    assert len(store.list_history(client.id, limit=1)) == 1
    assert store.list_history("someone-else") == []

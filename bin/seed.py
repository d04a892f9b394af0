#!/usr/bin/env python3
"""Seed the client database with the standard plans and a few sample clients.

Purchase dates are relative to today so the sample covers every renewal
window. Does nothing when plans already exist.
"""
import sys
import time
from pathlib import Path

# Run from a checkout without installing
root = Path(__file__).resolve().parent.parent
for pkg in ("common", "ledger"):
    pkg_path = str(root / "packages" / pkg)
    if pkg_path not in sys.path:
        sys.path.insert(0, pkg_path)

from common.config import load_settings
from common.security import SecurityLog
from ledger.dates import SECONDS_PER_DAY
from ledger.lifecycle import ClientLifecycle
from ledger.models import Address, Plan
from ledger.store import ClientStore

PLANS = [
    Plan(
        name="Monthly Basic",
        description="Essential monthly plan",
        duration_months=1,
        price=29.90,
        features=["Basic game library", "Email support", "1 concurrent device"],
    ),
    Plan(
        name="Monthly Premium",
        description="Monthly plan with advanced features",
        duration_months=1,
        price=49.90,
        features=["Full game library", "Priority support", "2 concurrent devices", "4K quality"],
    ),
    Plan(
        name="Quarterly Basic",
        description="Basic plan billed every three months",
        duration_months=3,
        price=79.90,
        features=["Basic game library", "Email support", "1 concurrent device", "10% discount"],
    ),
    Plan(
        name="Quarterly Premium",
        description="Premium plan billed every three months",
        duration_months=3,
        price=129.90,
        features=[
            "Full game library", "Priority support", "2 concurrent devices",
            "4K quality", "10% discount",
        ],
    ),
    Plan(
        name="Yearly Basic",
        description="Basic yearly plan with the largest discount",
        duration_months=12,
        price=299.90,
        features=["Basic game library", "Email support", "1 concurrent device", "20% discount"],
    ),
    Plan(
        name="Yearly Pro",
        description="Professional yearly plan with every feature",
        duration_months=12,
        price=499.90,
        features=[
            "Full game library", "24/7 priority support", "3 concurrent devices",
            "4K HDR quality", "20% discount", "Early access to new games",
        ],
    ),
]

# (name, email, phone, plan index, days since purchase, notes, street, zip, payment)
CLIENTS = [
    ("João Silva", "joao.silva@email.com", "+5511999999999", 1, 10,
     "VIP client, always pays on time", "Rua das Flores, 123", "01234-567", "Credit card"),
    ("Maria Santos", "maria.santos@email.com", "+5511888888888", 2, 88,
     "First purchase", "Av. Paulista, 456", "01310-100", None),
    ("Pedro Costa", "pedro.costa@email.com", "+5511777777777", 5, 200,
     "Loyal client for two years", "Rua Augusta, 789", "01205-000", "PIX"),
    ("Ana Oliveira", "ana.oliveira@email.com", "+5511666666666", 0, 35,
     "Needs technical support", "Rua Oscar Freire, 321", "01426-000", None),
    ("Carlos Ferreira", "carlos.ferreira@email.com", "+5511555555555", 3, 86,
     "Corporate client", "Av. Brigadeiro Faria Lima, 1000", "01452-002", "Bank slip"),
]


def main() -> None:
    settings = load_settings()
    store = ClientStore(settings.clients_db)
    if store.list_plans():
        print(f"{settings.clients_db} already has plans, nothing to do")
        return

    for plan in PLANS:
        store.save_plan(plan)
    print(f"{len(PLANS)} plans created")

    lifecycle = ClientLifecycle(store, SecurityLog(), timezone=settings.timezone)
    now = time.time()
    for name, email, phone, plan_idx, age_days, notes, street, zip_code, payment in CLIENTS:
        client = lifecycle.create_client(
            name=name,
            plan_id=PLANS[plan_idx].id,
            actor_id="seed",
            purchase_date=now - age_days * SECONDS_PER_DAY,
            email=email,
            phone=phone,
            notes=notes,
            address=Address(street=street, city="São Paulo", state="SP",
                            zip_code=zip_code, country="Brazil"),
            payment_method=payment,
        )
        if payment:
            client.last_payment = client.purchase_date
            store.save_client(client)
    print(f"{len(CLIENTS)} clients created")

    updates = lifecycle.update_client_statuses()
    print(f"{len(updates)} client(s) flagged for renewal")


if __name__ == "__main__":
    main()

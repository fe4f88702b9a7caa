# catalog_optimizer/demo/seed_demo_data.py

from catalog_optimizer.core.billing import BillingTopUp
from catalog_optimizer.storage.db import DEFAULT_DB_PATH, initialize_schema
from catalog_optimizer.storage.ledger import CreditLedger

DEMO_ACCOUNT = "demo-merchant"


def seed_demo_data(db_path: str = DEFAULT_DB_PATH) -> int:
    initialize_schema(db_path)

    ledger = CreditLedger(db_path)
    ledger.create_account(DEMO_ACCOUNT, opening_balance=25)
    BillingTopUp(ledger).purchase_package(DEMO_ACCOUNT, "starter", payment_id="pi_demo_001")
    return ledger.get_balance(DEMO_ACCOUNT)


if __name__ == "__main__":
    balance = seed_demo_data()
    print(f"Demo account seeded with {balance} credits")

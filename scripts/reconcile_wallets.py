"""
Check every wallet against its bookings and ledger; report discrepancies.
Read-only: prints suggested SQL for manual remediation, never changes data.

Usage: python scripts/reconcile_wallets.py [user_id ...]
Exit code 1 when any wallet is inconsistent.
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from chillconnect.database import SessionLocal
from chillconnect.models.wallet import TokenWallet
from chillconnect.services.ledger import held_escrow_total, reconcile_wallet


def main():
    ids = [int(a) for a in sys.argv[1:] if a.isdigit()]
    db = SessionLocal()
    bad = 0
    try:
        q = db.query(TokenWallet)
        if ids:
            q = q.filter(TokenWallet.user_id.in_(ids))
        wallets = q.order_by(TokenWallet.user_id.asc()).all()
        for wallet in wallets:
            problems = reconcile_wallet(db, wallet.user_id)
            if not problems:
                continue
            bad += 1
            print(f"Wallet {wallet.id} (user {wallet.user_id}):")
            for p in problems:
                print(f"  - {p}")
            held = held_escrow_total(db, wallet.user_id)
            if held != wallet.escrow_balance:
                print(f"  fix: UPDATE token_wallets SET escrow_balance = {held} WHERE id = {wallet.id};")
        print(f"Checked {len(wallets)} wallet(s); {bad} inconsistent.")
    finally:
        db.close()
    sys.exit(1 if bad else 0)


if __name__ == "__main__":
    main()

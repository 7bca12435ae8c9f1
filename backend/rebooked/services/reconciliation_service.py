from __future__ import annotations

from datetime import datetime

from rebooked.models import UserWallet, WalletTransaction
from rebooked.services.wallet_service import LEDGER_SIGNS


def _signed_amount(txn_type: str, amount: int) -> int:
    return LEDGER_SIGNS.get((txn_type or "").strip().lower(), 0) * abs(int(amount or 0))


def recompute_wallet_balances(*, user_id: str | None = None) -> dict:
    """Compare stored available balances with the completed-transaction ledger."""
    query = UserWallet.query.order_by(UserWallet.user_id.asc())
    if user_id:
        query = query.filter_by(user_id=user_id)
    wallets = query.all()
    drift_items = []

    for wallet in wallets:
        txns = WalletTransaction.query.filter_by(user_id=wallet.user_id, status="completed").all()
        computed = sum(_signed_amount(t.type, t.amount) for t in txns)
        current = int(wallet.available_balance or 0)
        if current != computed:
            drift_items.append(
                {
                    "user_id": wallet.user_id,
                    "stored_balance": current,
                    "computed_balance": computed,
                    "drift": current - computed,
                }
            )

    return {
        "ok": not drift_items,
        "scope": "wallet_ledger",
        "wallet_count": len(wallets),
        "drift_count": len(drift_items),
        "drift_items": drift_items,
        "generated_at": datetime.utcnow().isoformat(),
    }

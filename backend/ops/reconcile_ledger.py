from __future__ import annotations

import argparse
import json
import os
import sys


def _bootstrap_app():
    from rebooked import create_app

    app = create_app()
    app.app_context().push()
    return app


def main():
    parser = argparse.ArgumentParser(description="Compare wallet balances with the transaction ledger and report drift.")
    parser.add_argument("--user", default="", help="Only check this user's wallet.")
    args = parser.parse_args()

    _bootstrap_app()
    from rebooked.services.reconciliation_service import recompute_wallet_balances

    summary = recompute_wallet_balances(user_id=(args.user or None))
    print(json.dumps(summary, indent=2))
    return 0 if int(summary.get("drift_count") or 0) == 0 else 2


if __name__ == "__main__":
    os.environ.setdefault("FLASK_APP", "main.py")
    sys.exit(main())

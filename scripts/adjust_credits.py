#!/usr/bin/env python3
"""
Correct a user's credit balance (support desk).

Usage:
    python scripts/adjust_credits.py --user-id 34 --delta 5 --reason "Listing failed to publish"
    python scripts/adjust_credits.py --user-id 34 --delta 3 --refund --reason "Duplicate charge"
"""
import argparse
import sys

from app.core.exceptions import SokofitiException
from app.db.session import SessionLocal
from app.models.subscription_models import CreditAction
from app.services.subscription_service import SubscriptionService


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--user-id", type=int, required=True)
    parser.add_argument("--delta", type=int, required=True, help="Credits to add (negative to remove)")
    parser.add_argument("--reason", required=True)
    parser.add_argument("--refund", action="store_true", help="Record as a refund instead of a manual adjustment")
    args = parser.parse_args()

    action = CreditAction.REFUND if args.refund else CreditAction.MANUAL_ADJUSTMENT
    db = SessionLocal()
    try:
        subscription = SubscriptionService(db).adjust_credits(args.user_id, args.delta, args.reason, action)
    except SokofitiException as exc:
        print(f"❌ {exc.message}")
        return 1
    finally:
        db.close()

    print(f"✅ User {args.user_id}: {args.delta:+d} credits ({action.value})")
    print(f"   Subscription: {subscription.id}")
    print(f"   Balance: {subscription.credits_remaining}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""Insert the default subscription plans that are missing from the database."""

from app.db.session import session_scope
from app.services.plan_catalog import PlanCatalog, seed_default_plans


def main():
    with session_scope() as db:
        inserted = seed_default_plans(db)
        catalog = PlanCatalog(db)
        plans = catalog.list_plans()

        print('\n' + '=' * 60)
        print('SUBSCRIPTION PLANS')
        print('=' * 60 + '\n')
        for plan in plans:
            period = plan.period.value if plan.period else 'no expiry'
            credits = catalog.credits_for(plan)
            print(f'{plan.sort_order}. {plan.name} ({plan.id})')
            print(f'   Price: KES {plan.price:,.0f} / {period}')
            print(f'   Credits: {credits}')
            print('-' * 60)

        print(f'\nInserted {inserted} new plan(s); {len(plans)} active.\n')


if __name__ == '__main__':
    main()

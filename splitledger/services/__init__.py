"""
Services Package
================

Business logic layer for splitledger.

All balance, settlement and membership operations are handled here.
Routes should call these services, not manipulate models directly.
"""

from splitledger.services.ledger_service import (
    fold_balances,
    compute_group_balances,
    compute_user_balance,
    recalculate_user_balance,
    recalculate_users_balances,
    recalculate_all_group_balances,
    affected_users,
    find_balance_drift,
    repair_group_balances,
    repair_all_balances
)

from splitledger.services.settlement_service import (
    UserBalance,
    Settlement,
    calculate_settlements,
    serialize_settlement,
    group_user_balances,
    suggest_settlements,
    settle_all,
    mark_settlement_paid
)

from splitledger.services.expense_service import (
    build_equal_split,
    build_exact_split,
    create_expense,
    update_expense,
    delete_expense,
    get_expense,
    list_expenses
)

from splitledger.services.payment_service import (
    create_payment,
    update_payment,
    delete_payment,
    get_payment,
    list_payments
)

from splitledger.services.membership_service import (
    create_user,
    create_group,
    add_member,
    remove_member,
    delete_group,
    get_group,
    list_members,
    list_activity
)

"""
Settlement Engine

Turns a snapshot of split expenses and a participant roster into net
balances and a short list of transfers that settles everyone up.

DESIGN DECISION: The engine is a set of pure functions. It never reads
storage, keeps no state between calls and can be run for several groups
at once without coordination.

ALGORITHM (greedy debt simplification):
1. Every participant starts at zero.
2. The payer is credited the full amount; each member of the split is
   debited an unrounded equal share.
3. Creditors are ordered largest first, debtors most negative first.
   Both sorts are stable, so ties keep roster order.
4. The current creditor and debtor settle min(credit, debt); whoever
   reaches zero (within epsilon) is passed over.
5. Amounts are rounded to cents on the running total of all transfers,
   so rounding never accumulates on one participant.

GUARANTEES:
- At most len(participants) - 1 transfers
- No transfer from a participant to themselves
- Same input, same output, same order
- Applying the transfers clears every balance to within one cent

The greedy pass is not guaranteed to find the global minimum number of
transfers for every distribution, only a small one.
"""

from decimal import Decimal
from typing import Iterable, Sequence

from expense_ledger.engines.money import (
    EPSILON,
    is_settled,
    round_money,
    split_share,
)
from expense_ledger.models.split import (
    Balance,
    Participant,
    SplitExpense,
    Transfer,
)


class SettlementError(ValueError):
    """Input to the settlement engine breaks its contract."""
    pass


class UnknownParticipantError(SettlementError):
    """An expense refers to someone who is not on the roster."""
    pass


def _net_balances(
    expenses: Iterable[SplitExpense],
    participants: Sequence[Participant],
) -> dict[str, Decimal]:
    """Net balance per participant id, in roster order."""
    balances: dict[str, Decimal] = {}
    for participant in participants:
        if participant.id in balances:
            raise SettlementError(f"Duplicate participant id in roster: {participant.id}")
        balances[participant.id] = Decimal("0")

    for expense in expenses:
        for participant_id in (expense.paid_by, *expense.split_among):
            if participant_id not in balances:
                raise UnknownParticipantError(
                    f"Expense {expense.id} references unknown participant {participant_id}"
                )

        balances[expense.paid_by] += expense.amount
        share = split_share(expense.amount, len(expense.split_among))
        for member_id in expense.split_among:
            balances[member_id] -= share

    return balances


def compute_balances(
    expenses: Iterable[SplitExpense],
    participants: Sequence[Participant],
) -> list[Balance]:
    """
    Net balance of every participant, in roster order.

    Participants with no expenses are included with a zero balance.
    Amounts are not rounded, so the balances sum to zero.
    """
    return [
        Balance(participant_id=participant_id, net_amount=amount)
        for participant_id, amount in _net_balances(expenses, participants).items()
    ]


def _settle(
    balances: dict[str, Decimal],
    epsilon: Decimal,
) -> list[Transfer]:
    creditors = [[pid, amount] for pid, amount in balances.items() if amount > epsilon]
    debtors = [[pid, amount] for pid, amount in balances.items() if amount < -epsilon]
    creditors.sort(key=lambda entry: entry[1], reverse=True)
    debtors.sort(key=lambda entry: entry[1])

    # (debtor, creditor, exact amount)
    matched: list[tuple[str, str, Decimal]] = []

    creditor_index = 0
    debtor_index = 0
    while creditor_index < len(creditors) and debtor_index < len(debtors):
        creditor = creditors[creditor_index]
        debtor = debtors[debtor_index]
        amount = min(creditor[1], -debtor[1])

        if amount > epsilon:
            matched.append((debtor[0], creditor[0], amount))

        creditor[1] -= amount
        debtor[1] += amount

        if is_settled(creditor[1], epsilon):
            creditor_index += 1
        if is_settled(debtor[1], epsilon):
            debtor_index += 1

    # Round the running total, not each transfer. A participant's transfers
    # are consecutive, so their rounded sum is within a cent of the exact sum
    # on both the paying and the receiving side.
    transfers = []
    exact_total = Decimal("0")
    rounded_total = Decimal("0")
    for debtor_id, creditor_id, amount in matched:
        exact_total += amount
        rounded = round_money(exact_total) - rounded_total
        rounded_total += rounded
        if rounded > 0:
            transfers.append(Transfer(from_id=debtor_id, to_id=creditor_id, amount=rounded))
    return transfers


def compute_settlements(
    expenses: Iterable[SplitExpense],
    participants: Sequence[Participant],
    epsilon: Decimal = EPSILON,
) -> list[Transfer]:
    """
    Compute the transfers that settle all balances.

    Args:
        expenses: Split expenses to settle
        participants: The roster; every id used by an expense must be here
        epsilon: Balances within this of zero count as settled

    Returns:
        Transfers in the order they were matched

    Raises:
        UnknownParticipantError: An expense references an id not on the roster
        SettlementError: The roster contains the same id twice
    """
    return _settle(_net_balances(expenses, participants), epsilon)


def total_paid(expenses: Iterable[SplitExpense], participant_id: str) -> Decimal:
    """Everything this participant paid out of pocket."""
    return sum(
        (e.amount for e in expenses if e.paid_by == participant_id),
        Decimal("0"),
    )


def total_share(expenses: Iterable[SplitExpense], participant_id: str) -> Decimal:
    """This participant's unrounded share of everything they took part in."""
    return sum(
        (e.share for e in expenses if participant_id in e.split_among),
        Decimal("0"),
    )

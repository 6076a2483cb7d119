"""Deterministic display message rendering for classified transactions."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Sequence

from backend.db.enums import TransactionType
from tracker.common import EPSILON, block_time_to_utc

if TYPE_CHECKING:
    from tracker.classifier import AcquisitionCandidate, DisposalCandidate, TokenMovementLine

DEFAULT_EXPLORER_TX_URL = "https://solscan.io/tx/"

TRANSACTION_TYPE_LABELS: dict[TransactionType, str] = {
    TransactionType.TOKEN_PURCHASE_SOL: "Token Purchase (SOL)",
    TransactionType.TOKEN_SALE_SOL: "Token Sale (SOL)",
    TransactionType.TOKEN_SALE: "Token Sale",
    TransactionType.TOKEN_PURCHASE: "Token Purchase",
    TransactionType.TOKEN_SWAP: "Token Swap",
    TransactionType.TOKEN_TRANSFER: "Token Transfer",
    TransactionType.SOL_TRANSFER: "SOL Transfer",
    TransactionType.UNKNOWN: "Unknown",
}


def format_block_time(block_time: int) -> str:
    return block_time_to_utc(block_time).strftime("%Y-%m-%d %H:%M:%S UTC")


def _fixed(value: Decimal, places: int) -> str:
    return f"{value:.{places}f}"


def render_message(
    *,
    transaction_type: TransactionType,
    signature: str,
    block_time: int,
    wallet: str,
    wallet_in_account_keys: bool,
    sol_change: Decimal,
    fee_sol: Decimal,
    movements: Sequence["TokenMovementLine"],
    primary_acquisition: Optional["AcquisitionCandidate"],
    primary_disposal: Optional["DisposalCandidate"],
    explorer_tx_url: str = DEFAULT_EXPLORER_TX_URL,
) -> str:
    """Render the operator-facing message in its fixed line order."""
    timestamp = format_block_time(block_time)
    link = f"TX: {explorer_tx_url}{signature}"
    fee_line = f"Fee: {_fixed(fee_sol, 9)} SOL"

    if (
        not wallet_in_account_keys
        and not movements
        and primary_acquisition is None
        and primary_disposal is None
        and transaction_type == TransactionType.UNKNOWN
    ):
        return "\n".join((f"Interaction detected for {wallet} at {timestamp}", link, fee_line))

    lines = [f"*{TRANSACTION_TYPE_LABELS[transaction_type]}* at {timestamp}"]
    for movement in movements:
        lines.append(f"{movement.action.value} {movement.amount_ui} {movement.symbol}")

    if primary_disposal is not None:
        pnl = primary_disposal.realized_pnl
        lines.append(
            f"Sold {_fixed(primary_disposal.amount_sold, primary_disposal.decimals)} {primary_disposal.symbol}"
            f" for {_fixed(primary_disposal.proceeds, 4)} SOL"
        )
        lines.append(f"   Cost Basis: {_fixed(primary_disposal.cost_of_goods_sold, 4)} SOL")
        lines.append(f"   PnL: {_fixed(pnl, 4)} SOL ({'Profit' if pnl >= 0 else 'Loss'})")

    if primary_acquisition is not None:
        lines.append(
            f"Bought {_fixed(primary_acquisition.amount, primary_acquisition.decimals)} {primary_acquisition.symbol}"
            f" for {_fixed(primary_acquisition.total_cost, 4)} SOL"
        )
        lines.append(f"   Price: {_fixed(primary_acquisition.cost_per_unit, 6)} SOL per {primary_acquisition.symbol}")

    if (
        wallet_in_account_keys
        and abs(sol_change) > EPSILON
        and primary_acquisition is None
        and primary_disposal is None
    ):
        sign = "+" if sol_change > 0 else ""
        lines.append(f"SOL Change: {sign}{_fixed(sol_change, 9)}")

    lines.append(fee_line)
    lines.append(link)
    return "\n".join(lines)

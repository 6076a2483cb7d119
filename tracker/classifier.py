"""Transaction classification from normalized balance deltas and program logs."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from backend.db.enums import MovementAction, TransactionType
from tracker.common import SOL_CHANGE_THRESHOLD
from tracker.fifo_ledger import FifoConsumption
from tracker.message import DEFAULT_EXPLORER_TX_URL, render_message
from tracker.normalizer import NormalizedTransaction
from tracker.token_symbols import TokenSymbolResolver

# Checked in order; the first marker present anywhere in the logs wins.
_LOG_MARKERS: tuple[tuple[str, TransactionType], ...] = (
    ("Instruction: Sell", TransactionType.TOKEN_SALE),
    ("Instruction: Buy", TransactionType.TOKEN_PURCHASE),
    ("Instruction: Swap", TransactionType.TOKEN_SWAP),
)
_TRANSFER_MARKER = "Instruction: Transfer"


class FifoQuoteSource(Protocol):
    """Read-only access to FIFO cost of goods sold."""

    def quote_disposal(self, owner_id: str, wallet: str, mint: str, amount: Decimal) -> FifoConsumption:
        """Quote cost of goods sold without mutating lots."""


@dataclass(frozen=True)
class TokenMovementLine:
    """Display and audit form of one token delta."""

    mint: str
    symbol: str
    action: MovementAction
    amount: Decimal
    amount_ui: str
    decimals: int


@dataclass(frozen=True)
class AcquisitionCandidate:
    """Token inflow paid for in SOL."""

    mint: str
    symbol: str
    amount: Decimal
    decimals: int
    cost_per_unit: Decimal
    total_cost: Decimal


@dataclass(frozen=True)
class DisposalCandidate:
    """Token outflow paid out in SOL with its quoted FIFO cost."""

    mint: str
    symbol: str
    amount_sold: Decimal
    decimals: int
    proceeds: Decimal
    cost_of_goods_sold: Decimal
    amount_covered: Decimal
    realized_pnl: Decimal


@dataclass(frozen=True)
class ClassifiedTransaction:
    """Normalized transaction plus classification and rendered message."""

    normalized: NormalizedTransaction
    transaction_type: TransactionType
    movements: tuple[TokenMovementLine, ...]
    acquisitions: tuple[AcquisitionCandidate, ...]
    disposals: tuple[DisposalCandidate, ...]
    primary_acquisition: Optional[AcquisitionCandidate]
    primary_disposal: Optional[DisposalCandidate]
    display_message: str

    @property
    def signature(self) -> str:
        return self.normalized.signature


def classify_from_logs(log_messages: Sequence[str], has_token_movements: bool) -> TransactionType:
    """Fallback label from program log markers: Sell > Buy > Swap > Transfer > Unknown."""
    for marker, transaction_type in _LOG_MARKERS:
        if any(marker in line for line in log_messages):
            return transaction_type
    if any(_TRANSFER_MARKER in line for line in log_messages):
        return TransactionType.TOKEN_TRANSFER if has_token_movements else TransactionType.SOL_TRANSFER
    return TransactionType.UNKNOWN


def _movement_lines(normalized: NormalizedTransaction, symbols: TokenSymbolResolver) -> tuple[TokenMovementLine, ...]:
    lines: list[TokenMovementLine] = []
    for mint, delta in normalized.token_deltas.items():
        amount = abs(delta.change)
        lines.append(
            TokenMovementLine(
                mint=mint,
                symbol=symbols.symbol_for(mint),
                action=MovementAction.RECEIVED if delta.change > 0 else MovementAction.SENT,
                amount=amount,
                amount_ui=f"{amount:.{delta.decimals}f}",
                decimals=delta.decimals,
            )
        )
    return tuple(lines)


def _acquisitions(
    normalized: NormalizedTransaction, movements: Sequence[TokenMovementLine]
) -> tuple[AcquisitionCandidate, ...]:
    inflows = [line for line in movements if line.action == MovementAction.RECEIVED]
    total_inflow = sum((line.amount for line in inflows), Decimal("0"))
    sol_spent = abs(normalized.sol_change)

    candidates: list[AcquisitionCandidate] = []
    for line in inflows:
        total_cost = sol_spent * line.amount / total_inflow if total_inflow > 0 else sol_spent
        candidates.append(
            AcquisitionCandidate(
                mint=line.mint,
                symbol=line.symbol,
                amount=line.amount,
                decimals=line.decimals,
                cost_per_unit=total_cost / line.amount,
                total_cost=total_cost,
            )
        )
    return tuple(candidates)


def _disposals(
    normalized: NormalizedTransaction,
    movements: Sequence[TokenMovementLine],
    *,
    owner_id: str,
    wallet: str,
    fifo: FifoQuoteSource,
) -> tuple[DisposalCandidate, ...]:
    outflows = [line for line in movements if line.action == MovementAction.SENT]
    total_outflow = sum((line.amount for line in outflows), Decimal("0"))
    sol_received = normalized.sol_change

    candidates: list[DisposalCandidate] = []
    for line in outflows:
        proceeds = sol_received * line.amount / total_outflow if total_outflow > 0 else sol_received
        quote = fifo.quote_disposal(owner_id, wallet, line.mint, line.amount)
        candidates.append(
            DisposalCandidate(
                mint=line.mint,
                symbol=line.symbol,
                amount_sold=line.amount,
                decimals=line.decimals,
                proceeds=proceeds,
                cost_of_goods_sold=quote.cost_of_goods_sold,
                amount_covered=quote.amount_covered,
                realized_pnl=proceeds - quote.cost_of_goods_sold,
            )
        )
    return tuple(candidates)


def classify_transaction(
    normalized: NormalizedTransaction,
    log_messages: Sequence[str],
    *,
    owner_id: str,
    wallet: str,
    fifo: FifoQuoteSource,
    symbols: TokenSymbolResolver,
    explorer_tx_url: str = DEFAULT_EXPLORER_TX_URL,
) -> ClassifiedTransaction:
    """Label ``normalized`` and derive acquisition/disposal candidates.

    Inflows paired with a SOL decrease beyond the threshold become
    acquisitions with SOL cost split by inflow volume share. Outflows paired
    with a SOL increase become disposals with proceeds split the same way and
    cost of goods sold quoted from ``fifo`` (lots are only read here).
    """
    movements = _movement_lines(normalized, symbols)

    acquisitions: tuple[AcquisitionCandidate, ...] = ()
    disposals: tuple[DisposalCandidate, ...] = ()
    if normalized.sol_change < -SOL_CHANGE_THRESHOLD:
        acquisitions = _acquisitions(normalized, movements)
    elif normalized.sol_change > SOL_CHANGE_THRESHOLD:
        disposals = _disposals(normalized, movements, owner_id=owner_id, wallet=wallet, fifo=fifo)

    primary_acquisition = max(acquisitions, key=lambda item: item.total_cost) if acquisitions else None
    primary_disposal = max(disposals, key=lambda item: abs(item.proceeds)) if disposals else None

    if acquisitions:
        transaction_type = TransactionType.TOKEN_PURCHASE_SOL
    elif disposals:
        transaction_type = TransactionType.TOKEN_SALE_SOL
    else:
        transaction_type = classify_from_logs(log_messages, has_token_movements=bool(movements))

    display_message = render_message(
        transaction_type=transaction_type,
        signature=normalized.signature,
        block_time=normalized.block_time,
        wallet=wallet,
        wallet_in_account_keys=normalized.wallet_in_account_keys,
        sol_change=normalized.sol_change,
        fee_sol=normalized.fee_sol,
        movements=movements,
        primary_acquisition=primary_acquisition,
        primary_disposal=primary_disposal,
        explorer_tx_url=explorer_tx_url,
    )

    return ClassifiedTransaction(
        normalized=normalized,
        transaction_type=transaction_type,
        movements=movements,
        acquisitions=acquisitions,
        disposals=disposals,
        primary_acquisition=primary_acquisition,
        primary_disposal=primary_disposal,
        display_message=display_message,
    )

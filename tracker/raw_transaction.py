"""Strict validation boundary for provider transaction payloads."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Sequence

from tracker.errors import ParseError
from tracker.provider_contract import RawTransaction, TokenBalance


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_mapping(value: Any, path: str, signature: Optional[str], block_slot: Optional[int]) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ParseError(f"missing or malformed {path}", signature=signature, block_slot=block_slot)
    return value


def _require_int(value: Any, path: str, signature: Optional[str], block_slot: Optional[int]) -> int:
    if not _is_int(value):
        raise ParseError(f"{path} must be an integer", signature=signature, block_slot=block_slot)
    return int(value)


def _int_list(value: Any, path: str, signature: str, block_slot: int) -> tuple[int, ...]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ParseError(f"{path} must be a list", signature=signature, block_slot=block_slot)
    if not all(_is_int(item) for item in value):
        raise ParseError(f"{path} must contain integers", signature=signature, block_slot=block_slot)
    return tuple(int(item) for item in value)


def _account_keys(value: Any, signature: str, block_slot: int) -> tuple[str, ...]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ParseError("message.accountKeys must be a list", signature=signature, block_slot=block_slot)
    keys: list[str] = []
    for item in value:
        if isinstance(item, str):
            keys.append(item)
        elif isinstance(item, Mapping) and isinstance(item.get("pubkey"), str):
            keys.append(item["pubkey"])
        else:
            raise ParseError("message.accountKeys entry is malformed", signature=signature, block_slot=block_slot)
    return tuple(keys)


def _token_balances(value: Any, path: str, signature: str, block_slot: int) -> tuple[TokenBalance, ...]:
    if value is None:
        return ()
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ParseError(f"{path} must be a list", signature=signature, block_slot=block_slot)

    balances: list[TokenBalance] = []
    for entry in value:
        if not isinstance(entry, Mapping):
            continue
        ui_amount = entry.get("uiTokenAmount")
        if not isinstance(ui_amount, Mapping):
            continue
        amount_string = ui_amount.get("uiAmountString")
        decimals = ui_amount.get("decimals")
        owner = entry.get("owner")
        mint = entry.get("mint")
        # Entries without an owner, mint or display amount carry nothing we can attribute.
        if not amount_string or not _is_int(decimals) or not isinstance(owner, str) or not isinstance(mint, str):
            continue
        try:
            amount = Decimal(str(amount_string))
        except InvalidOperation as exc:
            raise ParseError(
                f"{path} uiAmountString is not numeric: {amount_string!r}",
                signature=signature,
                block_slot=block_slot,
            ) from exc
        if not amount.is_finite():
            raise ParseError(
                f"{path} uiAmountString is not finite: {amount_string!r}",
                signature=signature,
                block_slot=block_slot,
            )
        account_index = entry.get("accountIndex")
        balances.append(
            TokenBalance(
                account_index=int(account_index) if _is_int(account_index) else -1,
                owner=owner,
                mint=mint,
                ui_amount_string=str(amount_string),
                decimals=int(decimals),
            )
        )
    return tuple(balances)


def parse_raw_transaction(payload: Any) -> RawTransaction:
    """Validate one provider payload into a RawTransaction or raise ParseError."""
    root = _require_mapping(payload, "transaction payload", None, None)

    block_slot_value = root.get("block_slot")
    block_slot = int(block_slot_value) if _is_int(block_slot_value) else None

    raw = _require_mapping(root.get("raw_transaction"), "raw_transaction", None, block_slot)
    transaction = _require_mapping(raw.get("transaction"), "raw_transaction.transaction", None, block_slot)

    signatures = transaction.get("signatures")
    if not isinstance(signatures, Sequence) or isinstance(signatures, (str, bytes)) or not signatures:
        raise ParseError("transaction.signatures is missing or empty", block_slot=block_slot)
    signature = signatures[0]
    if not isinstance(signature, str) or not signature:
        raise ParseError("transaction.signatures[0] must be a non-empty string", block_slot=block_slot)

    block_slot = _require_int(block_slot_value, "block_slot", signature, None)
    if block_slot < 0:
        raise ParseError("block_slot must be non-negative", signature=signature)
    block_time = _require_int(root.get("block_time"), "block_time", signature, block_slot)

    message = _require_mapping(transaction.get("message"), "transaction.message", signature, block_slot)
    meta = _require_mapping(raw.get("meta"), "raw_transaction.meta", signature, block_slot)

    log_messages = meta.get("logMessages") or ()
    if not isinstance(log_messages, Sequence) or isinstance(log_messages, (str, bytes)):
        raise ParseError("meta.logMessages must be a list", signature=signature, block_slot=block_slot)

    return RawTransaction(
        signature=signature,
        block_slot=block_slot,
        block_time=block_time,
        account_keys=_account_keys(message.get("accountKeys"), signature, block_slot),
        pre_balances=_int_list(meta.get("preBalances"), "meta.preBalances", signature, block_slot),
        post_balances=_int_list(meta.get("postBalances"), "meta.postBalances", signature, block_slot),
        pre_token_balances=_token_balances(meta.get("preTokenBalances"), "meta.preTokenBalances", signature, block_slot),
        post_token_balances=_token_balances(meta.get("postTokenBalances"), "meta.postTokenBalances", signature, block_slot),
        log_messages=tuple(str(line) for line in log_messages),
        fee_lamports=_require_int(meta.get("fee"), "meta.fee", signature, block_slot),
        failed=meta.get("err") is not None,
        payload=root,
    )

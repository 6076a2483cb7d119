from __future__ import annotations

from typing import Any

import pytest

from tests.utils.ledger_fakes import FakeProvider, RecordingNotifier, make_config
from tests.utils.payloads import MINT_X, OTHER_WALLET, OWNER, WALLET, buy_payload
from tracker.cursor import CursorPosition
from tracker.daemon import TrackerDaemon, WalletControl
from tracker.event_log import IngestionEventLog
from tracker.poller import TickOutcome
from tracker.tracking import TrackedWalletRegistry
import tracker.daemon as daemon_module


def _daemon(ledger_db, clock, provider, **overrides: Any) -> TrackerDaemon:
    return TrackerDaemon(
        db=ledger_db,
        provider=provider,
        config=make_config(**overrides),
        notifier=RecordingNotifier(),
        owner_id=OWNER,
        clock=clock,
    )


def _event_keys(ledger_db) -> set[tuple[str, str]]:
    return {(str(row["event_type"]), str(row["status"])) for row in IngestionEventLog(ledger_db).recent_events(200)}


def test_run_once_ticks_every_tracked_wallet(ledger_db, track_wallet, clock) -> None:
    track_wallet(WALLET, alias="main")
    track_wallet(OTHER_WALLET)
    provider = FakeProvider(
        {
            WALLET: [buy_payload("sig-a", 100, MINT_X, "1", "1")],
            OTHER_WALLET: [buy_payload("sig-b", 100, MINT_X, "2", "1", wallet=OTHER_WALLET)],
        }
    )
    daemon = _daemon(ledger_db, clock, provider)

    results = daemon.run_once()

    assert sorted(result.wallet for result in results) == sorted([WALLET, OTHER_WALLET])
    assert all(result.committed == 1 for result in results)
    status = daemon.get_status()
    assert status.tracked_wallet_count == 2
    assert status.active_wallet_count == 2
    assert status.last_cycle_status == "COMPLETED"
    by_wallet = {wallet.wallet: wallet for wallet in status.wallets}
    assert by_wallet[WALLET].alias == "main"
    assert by_wallet[WALLET].last_block_slot == 100
    assert by_wallet[WALLET].last_signature == "sig-a"
    assert by_wallet[WALLET].last_outcome == TickOutcome.COMPLETED.value


def test_suspend_and_resume_persist_across_daemons(ledger_db, track_wallet, clock) -> None:
    track_wallet(WALLET, alias="main")
    provider = FakeProvider({WALLET: [buy_payload("sig-a", 100, MINT_X, "1", "1")]})
    daemon = _daemon(ledger_db, clock, provider)

    record = daemon.suspend(OWNER, "main")
    assert record.is_active is False

    results = daemon.run_once()
    assert [result.outcome for result in results] == [TickOutcome.SKIPPED_SUSPENDED]
    assert provider.calls == []

    restarted = _daemon(ledger_db, clock, provider)
    assert restarted.get_status().active_wallet_count == 0

    assert restarted.resume(OWNER, WALLET).is_active is True
    assert restarted.run_once()[0].committed == 1
    assert {("WALLET", "SUSPENDED"), ("WALLET", "RESUMED")} <= _event_keys(ledger_db)


def test_unknown_wallet_is_rejected(ledger_db, clock) -> None:
    daemon = _daemon(ledger_db, clock, FakeProvider())
    with pytest.raises(ValueError, match="Wallet is not tracked"):
        daemon.suspend(OWNER, "nobody")


def test_one_failing_wallet_does_not_stop_the_cycle(ledger_db, track_wallet, clock) -> None:
    track_wallet(WALLET)
    track_wallet(OTHER_WALLET)
    provider = FakeProvider(
        {
            WALLET: KeyError("unexpected provider shape"),
            OTHER_WALLET: [buy_payload("sig-b", 100, MINT_X, "2", "1", wallet=OTHER_WALLET)],
        }
    )
    daemon = _daemon(ledger_db, clock, provider)

    results = daemon.run_once()

    assert [result.wallet for result in results] == [OTHER_WALLET]
    assert results[0].committed == 1
    assert daemon.get_status().last_cycle_status == "PARTIAL:failed_wallets=1"
    assert ("TICK", "FAILED") in _event_keys(ledger_db)
    assert all(context.in_flight is False for context in daemon.contexts)


def test_reset_cursor_reinitializes_from_latest(ledger_db, track_wallet, clock) -> None:
    track_wallet(WALLET)
    provider = FakeProvider({WALLET: [buy_payload("sig-a", 100, MINT_X, "1", "1")]})
    daemon = _daemon(ledger_db, clock, provider, start_from_latest=True)

    assert daemon.run_once()[0].outcome == TickOutcome.CURSOR_INITIALIZED
    daemon.reset_cursor(OWNER, WALLET)
    assert daemon.get_status().wallets[0].last_block_slot is None

    provider.payloads[WALLET] = [
        buy_payload("sig-a", 100, MINT_X, "1", "1"),
        buy_payload("sig-c", 110, MINT_X, "1", "1", held_before="1"),
    ]
    result = daemon.run_once()[0]
    assert result.outcome == TickOutcome.CURSOR_INITIALIZED
    assert result.cursor == CursorPosition(110, "sig-c")
    assert result.committed == 0
    assert ("CURSOR", "RESET") in _event_keys(ledger_db)


def test_removed_wallet_leaves_the_schedule(ledger_db, track_wallet, clock) -> None:
    track_wallet(WALLET)
    track_wallet(OTHER_WALLET)
    daemon = _daemon(ledger_db, clock, FakeProvider())
    assert len(daemon.refresh_wallets()) == 2

    TrackedWalletRegistry(ledger_db).remove(OWNER, OTHER_WALLET)
    assert [context.wallet for context in daemon.refresh_wallets()] == [WALLET]


def test_daemon_loop_stops_after_max_cycles(ledger_db, track_wallet, clock, monkeypatch: pytest.MonkeyPatch) -> None:
    track_wallet(WALLET)
    provider = FakeProvider({WALLET: []})
    sleeps: list[float] = []
    monkeypatch.setattr(daemon_module.time, "sleep", sleeps.append)
    daemon = _daemon(ledger_db, clock, provider, poll_interval_seconds=7.0)

    daemon.daemon_loop(max_cycles=3)

    assert len(provider.calls) == 3
    assert sleeps == [7.0, 7.0]
    keys = _event_keys(ledger_db)
    assert ("DAEMON", "STARTED") in keys
    assert ("DAEMON", "STOPPED") in keys


def test_daemon_loop_raises_after_consecutive_failures(ledger_db, clock, monkeypatch: pytest.MonkeyPatch) -> None:
    sleeps: list[float] = []
    monkeypatch.setattr(daemon_module.time, "sleep", sleeps.append)
    daemon = _daemon(ledger_db, clock, FakeProvider(), max_consecutive_failures=2, failure_backoff_seconds=3.0)

    def _broken_cycle() -> list[Any]:
        raise RuntimeError("registry unreachable")

    monkeypatch.setattr(daemon, "_run_once_cycle", _broken_cycle)

    with pytest.raises(RuntimeError, match=r"exceeded max consecutive failures \(2\)"):
        daemon.daemon_loop(max_cycles=5)

    assert sleeps == [3.0]
    keys = _event_keys(ledger_db)
    assert ("DAEMON_CYCLE", "FAILED") in keys
    assert ("DAEMON", "STOPPED") in keys


def test_wallet_control_works_without_a_daemon(ledger_db, track_wallet, clock) -> None:
    track_wallet(WALLET, alias="main")
    track_wallet(OTHER_WALLET)
    control = WalletControl(ledger_db, owner_id=OWNER, clock=clock)

    assert control.suspend(OWNER, "main").is_active is False
    record = control.reset_cursor(OWNER, "main")
    assert record.address == WALLET

    status = control.status()
    assert [wallet.wallet for wallet in status.wallets] == sorted([WALLET, OTHER_WALLET])
    assert (status.tracked_wallet_count, status.active_wallet_count) == (2, 1)
    assert all(wallet.last_outcome is None for wallet in status.wallets)
    assert status.last_cycle_status is None
    assert {("WALLET", "SUSPENDED"), ("CURSOR", "RESET")} <= _event_keys(ledger_db)

    with pytest.raises(ValueError, match="Wallet is not tracked"):
        control.resume(OWNER, "ghost")

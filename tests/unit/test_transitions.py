"""
Unit tests for src/reconciliation/transitions.py -- lifecycle detection.

Tests cover:
  - Closed positions -> FILLED records
  - Vanished pending orders -> CANCELLED unless they moved to active
  - Identity-only carry-forward: locks and ticketless orders are not
    matched by symbol
  - No double counting across ticks
  - Detection is suspended (baseline frozen) while disconnected
"""
from src.constants import CANCELLED_REASON
from src.domain.models import (
    ActivePosition,
    FinalStatus,
    PendingOrder,
    SymbolStatus,
    TrendBias,
)
from src.reconciliation.classifier import Classification
from src.reconciliation.transitions import TransitionDetector, detect_transitions, identity_key


def _active(symbol="BTCUSD", ticket=None, layer=1, pnl=12.0) -> ActivePosition:
    return ActivePosition(
        symbol=symbol,
        type=TrendBias.LONG,
        entry_price=60000.0,
        pnl=pnl,
        layer=layer,
        reason="Auto HMA",
        time="12:00:00",
        status=SymbolStatus.SCALING,
        ticket=ticket,
    )


def _pending(symbol="ETHUSD", ticket=None, layer=1, limit_price=2000.0, current_price=2050.0) -> PendingOrder:
    return PendingOrder(
        symbol=symbol,
        bias=TrendBias.SHORT,
        status=SymbolStatus.LOCKED,
        current_price=current_price,
        limit_price=limit_price,
        ticket=ticket,
        layer=layer,
    )


def _lock(symbol="ETHUSD") -> PendingOrder:
    return PendingOrder(symbol=symbol, bias=TrendBias.LONG, status=SymbolStatus.LOCKED, current_price=2050.0)


# ---------------------------------------------------------------------------
# identity
# ---------------------------------------------------------------------------

def test_identity_prefers_ticket():
    assert identity_key(_active(ticket=100)) == ("ticket", 100)
    assert identity_key(_active(ticket=None, layer=2)) == ("symbol", "BTCUSD", 2)


# ---------------------------------------------------------------------------
# detect_transitions
# ---------------------------------------------------------------------------

class TestDetectTransitions:

    def test_closed_position_is_filled(self):
        records = detect_transitions([_active(ticket=100)], [], [], [])
        assert len(records) == 1
        record = records[0]
        assert record.final_status == FinalStatus.FILLED
        assert record.ticket == 100
        assert record.pnl == 12.0

    def test_surviving_position_produces_nothing(self):
        assert detect_transitions([_active(ticket=100)], [], [_active(ticket=100, pnl=30.0)], []) == []

    def test_pending_filled_into_active_is_not_cancelled(self):
        prev_pending = [_pending(symbol="BTCUSD", ticket=None)]
        records = detect_transitions([], prev_pending, [_active(symbol="BTCUSD")], [])
        assert [r for r in records if r.final_status == FinalStatus.CANCELLED] == []

    def test_ticketed_pending_filled_into_active(self):
        records = detect_transitions([], [_pending(ticket=55)], [_active(symbol="ETHUSD", ticket=55)], [])
        assert records == []

    def test_vanished_pending_is_cancelled(self):
        records = detect_transitions([], [_pending(ticket=55)], [], [])
        assert len(records) == 1
        record = records[0]
        assert record.final_status == FinalStatus.CANCELLED
        assert record.entry_price == 2000.0
        assert record.pnl == 0.0
        assert record.layer == 0
        assert record.reason == CANCELLED_REASON
        assert record.type == TrendBias.SHORT

    def test_cancelled_without_limit_uses_current_price(self):
        records = detect_transitions([], [_pending(ticket=55, limit_price=None)], [], [])
        assert records[0].entry_price == 2050.0

    def test_watchlist_lock_turning_into_ticketed_order_is_cancelled(self):
        records = detect_transitions([], [_lock()], [], [_pending(ticket=55)])
        assert len(records) == 1
        assert records[0].final_status == FinalStatus.CANCELLED
        assert records[0].symbol == "ETHUSD"
        assert records[0].ticket is None

    def test_ticketless_pending_vs_ticketed_active_is_cancelled(self):
        prev_pending = [_pending(symbol="BTCUSD", ticket=None, layer=2)]
        records = detect_transitions([], prev_pending, [_active(symbol="BTCUSD", ticket=77)], [])
        assert [(r.symbol, r.final_status) for r in records] == [("BTCUSD", FinalStatus.CANCELLED)]

    def test_ticketless_pending_at_other_layer_is_cancelled(self):
        prev_pending = [_pending(symbol="BTCUSD", ticket=None, layer=2)]
        records = detect_transitions([], prev_pending, [_active(symbol="BTCUSD", layer=1)], [])
        assert [r.final_status for r in records] == [FinalStatus.CANCELLED]

    def test_watchlist_lock_released_is_cancelled(self):
        records = detect_transitions([], [_lock()], [], [])
        assert [r.final_status for r in records] == [FinalStatus.CANCELLED]

    def test_closed_before_cancelled(self):
        records = detect_transitions([_active(ticket=1)], [_pending(ticket=2)], [], [])
        assert [r.final_status for r in records] == [FinalStatus.FILLED, FinalStatus.CANCELLED]

    def test_duplicate_identities_recorded_once(self):
        records = detect_transitions([_active(ticket=7), _active(ticket=7)], [], [], [])
        assert len(records) == 1

    def test_cancelled_time_label(self):
        records = detect_transitions([], [_pending(ticket=3)], [], [], cancelled_time="09:30:00")
        assert records[0].time == "09:30:00"


# ---------------------------------------------------------------------------
# TransitionDetector
# ---------------------------------------------------------------------------

class TestTransitionDetector:

    def test_each_transition_recorded_once(self):
        detector = TransitionDetector()
        detector.observe(Classification(active_positions=(_active(ticket=100),)), connected=True)

        first = detector.observe(Classification(), connected=True)
        second = detector.observe(Classification(), connected=True)

        assert len(first) == 1
        assert second == []

    def test_disconnected_ticks_do_not_detect(self):
        detector = TransitionDetector()
        detector.observe(Classification(active_positions=(_active(ticket=100),)), connected=True)

        assert detector.observe(Classification(), connected=False) == []
        # Baseline survived the outage
        assert detector.baseline.active_positions[0].ticket == 100

    def test_reconnect_with_same_world_records_nothing(self):
        detector = TransitionDetector()
        world = Classification(active_positions=(_active(ticket=100),), pending_orders=(_pending(ticket=5),))
        detector.observe(world, connected=True)
        detector.observe(Classification(), connected=False)
        assert detector.observe(world, connected=True) == []

    def test_reset_clears_baseline(self):
        detector = TransitionDetector()
        detector.observe(Classification(active_positions=(_active(ticket=1),)), connected=True)
        detector.reset()
        assert detector.observe(Classification(), connected=True) == []

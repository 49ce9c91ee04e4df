import pytest

import config
from engine.chain import aggregate
from engine.models import Entry, Position
from engine.projection import (
    build_adjustment, project, commit, evaluate, step_metrics,
    edit_entry, remove_entry, update_levels, chain_levels,
)
from engine.validation import ValidationFailed


def _fields(exc_info):
    return {e.field for e in exc_info.value.errors}


class TestScenario:
    def test_original_short_position(self, short_btc):
        m = evaluate(short_btc)
        assert m.risk_amount == pytest.approx(204.88, abs=0.01)
        assert m.reward_amount == pytest.approx(1237.98, abs=0.01)
        assert m.risk_reward_ratio == pytest.approx(6.04, abs=0.01)
        assert m.liquidation_price == pytest.approx(102500 * (1 + 1 / 7))
        assert m.pnl is None and m.pnl_percentage is None

    def test_after_adding_1500_at_96000(self, short_btc):
        proposed = build_adjustment(short_btc, 'add', 96000, 1500, 7)
        m = project(short_btc, proposed)
        assert m.average_entry_price == pytest.approx(99250)
        assert m.total_size == pytest.approx(3000)
        assert m.average_leverage == pytest.approx(7)
        assert m.risk_amount == pytest.approx(1110.83, abs=0.01)
        assert m.reward_amount == pytest.approx(21000 * 8835 / 99250)
        assert m.risk_reward_ratio == pytest.approx(1.68, abs=0.01)

    def test_projection_does_not_mutate(self, short_btc):
        proposed = build_adjustment(short_btc, 'add', 96000, 1500, 7)
        project(short_btc, proposed)
        assert len(short_btc.entries) == 1

    def test_current_price_gives_unrealized_pnl(self, short_btc):
        proposed = build_adjustment(short_btc, 'add', 96000, 1500, 7)
        m = project(short_btc, proposed, current_price=101000)
        expected_pct = (101000 - 99250) / 99250 * 100 * -1 * 7
        assert m.pnl_percentage == pytest.approx(expected_pct)
        assert m.pnl == pytest.approx(3000 * expected_pct / 100)


class TestRoundTrip:
    @pytest.mark.parametrize('kind,price,size,leverage', [
        ('add', 96000, 1500, 7),
        ('add', 100000, 700, 3),
        ('subtract', 98000, 600, None),
    ])
    def test_preview_matches_commit(self, short_btc, kind, price, size, leverage):
        position = commit(short_btc, build_adjustment(short_btc, 'add', 101000, 1000, 5))
        proposed = build_adjustment(position, kind, price, size, leverage)

        preview = project(position, proposed, current_price=99000)
        committed = commit(position, proposed)
        after = evaluate(committed, current_price=99000)

        assert after.average_entry_price == preview.average_entry_price
        assert after.total_size == preview.total_size
        assert after.to_dict() == preview.to_dict()


class TestLeverageSelection:
    def test_add_requires_leverage(self, short_btc):
        with pytest.raises(ValidationFailed) as exc:
            build_adjustment(short_btc, 'add', 96000, 1500)
        assert _fields(exc) == {'leverage'}

    def test_add_leverage_range(self, short_btc):
        with pytest.raises(ValidationFailed):
            build_adjustment(short_btc, 'add', 96000, 1500, config.MAX_LEVERAGE + 1)

    def test_reduce_uses_average_leverage(self):
        position = Position.open('ETH', 'long', 100, 1000, 2)
        position = commit(position, build_adjustment(position, 'add', 110, 1000, 4))
        proposed = build_adjustment(position, 'subtract', 120, 500, leverage=25)
        assert proposed.leverage == pytest.approx(3)

    def test_non_positive_inputs(self, short_btc):
        with pytest.raises(ValidationFailed) as exc:
            build_adjustment(short_btc, 'add', 0, -5, 7)
        assert _fields(exc) == {'newEntryPrice', 'adjustmentSize'}

    def test_unknown_kind(self, short_btc):
        with pytest.raises(ValueError):
            build_adjustment(short_btc, 'initial', 96000, 1500, 7)


class TestLevelValidation:
    def test_long_stop_above_average_rejected(self):
        position = Position.open('BTC', 'long', 100, 1000, 2, stop_loss=95)
        proposed = build_adjustment(position, 'add', 100, 1000, 2, stop_loss=105)
        with pytest.raises(ValidationFailed) as exc:
            project(position, proposed)
        assert _fields(exc) == {'stopLoss'}

    def test_short_target_above_average_rejected(self, short_btc):
        proposed = build_adjustment(short_btc, 'add', 96000, 1500, 7, take_profit=100000)
        with pytest.raises(ValidationFailed) as exc:
            project(short_btc, proposed)
        assert _fields(exc) == {'takeProfit'}

    def test_add_that_moves_average_past_stop_rejected(self):
        position = Position.open('BTC', 'long', 100, 1000, 2, stop_loss=95)
        proposed = build_adjustment(position, 'add', 90, 3000, 2)
        with pytest.raises(ValidationFailed):
            project(position, proposed)

    def test_entry_override_beats_position_default(self, short_btc):
        proposed = build_adjustment(short_btc, 'add', 96000, 1500, 7, take_profit=95000)
        m = project(short_btc, proposed)
        assert m.reward_amount == pytest.approx(21000 * (99250 - 95000) / 99250)

    def test_latest_override_wins(self, short_btc):
        entries = short_btc.entries + (
            Entry(96000, 500, 7, 'add', stop_loss=110000),
            Entry(97000, 500, 7, 'add', stop_loss=108000),
        )
        position = Position(symbol='BTC', direction='short', entries=entries,
                            stop_loss=104500, take_profit=90415)
        assert chain_levels(position, position.entries) == (108000, 90415)

    def test_update_levels(self, short_btc):
        with pytest.raises(ValidationFailed):
            update_levels(short_btc, stop_loss=100000)
        updated = update_levels(short_btc, stop_loss=105000, take_profit=None)
        assert updated.stop_loss == 105000
        assert evaluate(updated).reward_amount == 0


class TestReduces:
    def test_over_close_rejected(self, short_btc):
        proposed = build_adjustment(short_btc, 'subtract', 100000, 2000)
        with pytest.raises(ValidationFailed) as exc:
            project(short_btc, proposed)
        assert _fields(exc) == {'adjustmentSize'}

    def test_over_close_clamped_when_allowed(self, short_btc, monkeypatch):
        monkeypatch.setattr(config, 'REJECT_OVER_CLOSE', False)
        m = project(short_btc, build_adjustment(short_btc, 'subtract', 100000, 2000))
        assert m.total_size == 0
        assert m.average_entry_price == 0
        assert m.liquidation_price is None

    def test_full_close(self, short_btc):
        m = project(short_btc, build_adjustment(short_btc, 'subtract', 100000, 1500), current_price=99000)
        assert m.total_size == 0
        assert m.risk_amount == 0 and m.reward_amount == 0 and m.risk_reward_ratio == 0
        assert m.liquidation_price is None
        assert m.pnl == 0
        assert m.realized_pnl == pytest.approx(1500 * (2500 / 102500) * 7)

    def test_partial_reduce_keeps_fifo_average(self):
        position = Position.open('ETH', 'long', 100, 1000, 2)
        position = commit(position, build_adjustment(position, 'add', 110, 1000, 2))
        m = project(position, build_adjustment(position, 'subtract', 120, 1000))
        assert m.average_entry_price == pytest.approx(110)
        assert m.total_size == pytest.approx(1000)


class TestEdits:
    def test_edit_entry_recomputes(self, short_btc):
        position = commit(short_btc, build_adjustment(short_btc, 'add', 96000, 1500, 7))
        edited = edit_entry(position, 1, entry_price=98000)
        assert evaluate(edited).average_entry_price == pytest.approx(100250)
        assert position.entries[1].entry_price == 96000

    def test_edit_rejects_bad_numbers(self, short_btc):
        with pytest.raises(ValidationFailed) as exc:
            edit_entry(short_btc, 0, size=0, leverage=0.5)
        assert _fields(exc) == {'size', 'leverage'}

    def test_edit_rejects_wrong_side_override(self, short_btc):
        with pytest.raises(ValidationFailed):
            edit_entry(short_btc, 0, stop_loss=90000)

    def test_initial_entry_not_removable(self, short_btc):
        with pytest.raises(ValueError):
            remove_entry(short_btc, 0)

    def test_removing_add_that_covers_a_reduce(self):
        position = Position.open('ETH', 'long', 100, 1000, 2)
        position = commit(position, build_adjustment(position, 'add', 110, 1000, 2))
        position = commit(position, build_adjustment(position, 'subtract', 120, 1500))
        with pytest.raises(ValidationFailed):
            remove_entry(position, 1)
        trimmed = remove_entry(position, 2)
        assert aggregate(trimmed.entries, 'long').remaining_size == 2000


class TestReduceCoverage:
    """A reduce must be covered by lots opened before it, not after."""

    @pytest.fixture
    def reopened(self):
        position = Position.open('ETH', 'long', 100, 1000, 2)
        position = commit(position, build_adjustment(position, 'add', 110, 1000, 2))
        position = commit(position, build_adjustment(position, 'subtract', 120, 1500))
        return commit(position, build_adjustment(position, 'add', 130, 1000, 2))

    def test_chain_is_valid_as_built(self, reopened):
        assert aggregate(reopened.entries, 'long').remaining_size == pytest.approx(1500)

    def test_removing_earlier_add_rejected(self, reopened):
        with pytest.raises(ValidationFailed) as exc:
            remove_entry(reopened, 1)
        assert _fields(exc) == {'adjustmentSize'}

    def test_shrinking_earlier_add_rejected(self, reopened):
        with pytest.raises(ValidationFailed) as exc:
            edit_entry(reopened, 1, size=100)
        assert _fields(exc) == {'adjustmentSize'}

    def test_editing_later_add_allowed(self, reopened):
        edited = edit_entry(reopened, 3, size=100)
        assert aggregate(edited.entries, 'long').remaining_size == pytest.approx(600)

    def test_uncovered_reduce_clamped_when_allowed(self, reopened, monkeypatch):
        monkeypatch.setattr(config, 'REJECT_OVER_CLOSE', False)
        trimmed = remove_entry(reopened, 1)
        assert len(trimmed.entries) == 3


def test_step_metrics_rows(short_btc):
    position = commit(short_btc, build_adjustment(short_btc, 'add', 96000, 1500, 7))
    position = commit(position, build_adjustment(position, 'subtract', 95000, 1000))
    rows = step_metrics(position, current_price=97000)

    assert [r['kind'] for r in rows] == ['initial', 'add', 'subtract']
    assert rows[0]['risk_amount'] == pytest.approx(204.88, abs=0.01)
    assert rows[1]['average_entry_price'] == pytest.approx(99250)
    assert rows[2]['remaining_size'] == pytest.approx(2000)
    assert rows[2]['average_entry_price'] == pytest.approx((500 * 102500 + 1500 * 96000) / 2000)
    assert rows[2]['step_realized_pnl'] == pytest.approx(1000 * (4250 / 99250) * 7)
    assert rows[0]['step_realized_pnl'] == 0
    assert rows[2]['realized_pnl'] == pytest.approx(rows[2]['step_realized_pnl'])

"""Tests for plain loan previews in llamalev.loan.LoanCalculator."""

from decimal import Decimal

import pytest

from llamalev.errors import BandRangeError, LiquidationModeError, LoanNotFoundError
from llamalev.models import BandRange
from llamalev.units import format_units, parse_units
from tests.conftest import USER, make_curve, make_market, make_state, run


@pytest.fixture
def loan():
    return make_market().loan


class TestMarketState:
    def test_parameters_in_percent(self, loan):
        params = run(loan.parameters())
        assert params.amplification == 100
        assert params.base_price == Decimal(1)
        assert params.loan_discount == Decimal(9)
        assert params.liquidation_discount == Decimal(6)

    def test_oracle_price_band(self):
        loan = make_market(oracle_price=Decimal("0.985")).loan
        assert run(loan.oracle_price_band()) == 1


class TestCreateLoan:
    def test_max_recv(self, loan):
        expected = parse_units(Decimal(10) * make_curve().k_effective(10))
        assert run(loan.create_loan_max_recv(10, 10)) == format_units(expected)

    def test_band_range_checked_before_reads(self, loan):
        with pytest.raises(BandRangeError):
            run(loan.create_loan_max_recv(10, 51))
        with pytest.raises(BandRangeError):
            run(loan.create_loan_health(10, 5, 3))
        assert loan.controller.calls == []
        assert loan.amm.calls == []

    def test_max_recv_non_increasing_in_band_count(self, loan):
        debts = run(loan.create_loan_max_recv_all_ranges(10))
        values = [debts[n] for n in sorted(debts)]
        assert sorted(debts) == list(range(4, 51))
        assert all(a >= b for a, b in zip(values, values[1:]))
        assert values[0] > values[-1]

    def test_max_range(self, loan):
        debts = run(loan.create_loan_max_recv_all_ranges(10))
        assert run(loan.max_range(10, 100)) == 3
        assert run(loan.max_range(10, 1)) == 50
        assert run(loan.max_range(10, debts[30])) == 30

    def test_bands_all_ranges_stop_at_max_range(self, loan):
        debts = run(loan.create_loan_max_recv_all_ranges(10))
        bands = run(loan.create_loan_bands_all_ranges(10, debts[30]))
        assert bands[30] is not None
        assert bands[31] is None

    def test_prices_all_ranges_from_curve(self, loan):
        debts = run(loan.create_loan_max_recv_all_ranges(10))
        prices = run(loan.create_loan_prices_all_ranges(10, debts[10]))
        curve = make_curve()
        band = run(loan.create_loan_bands(10, debts[10], 10))
        assert prices[10] == curve.calc_prices(band)
        assert prices[11] is None

    def test_health_for_new_loan(self, loan):
        assert run(loan.create_loan_health(10, 5, 10)) == Decimal(5)


class TestExistingPosition:
    def test_borrow_more_bands_needs_loan(self, loan):
        with pytest.raises(LoanNotFoundError):
            run(loan.borrow_more_bands(1, 1, USER))

    def test_borrow_more_bands(self, loan):
        loan.controller.states[USER] = make_state(collateral="10", debt="5", n=10)
        bands = run(loan.borrow_more_bands(10, 5, USER))
        assert bands == BandRange(n1=-5, n2=4)

    def test_borrow_more_max_recv(self, loan):
        loan.controller.states[USER] = make_state(collateral="10", debt="5", n=10)
        more = run(loan.borrow_more_max_recv(0, USER))
        assert more == run(loan.create_loan_max_recv(10, 10)) - 5

    def test_health_keeps_current_range(self, loan):
        run(loan.borrow_more_health(1, 1, USER))
        assert loan.controller.calls[-1] == ("health_calculator", USER, parse_units(1), parse_units(1), True, 0)

    def test_max_removable(self, loan):
        loan.controller.states[USER] = make_state(collateral="10", debt="5", n=10)
        removable = run(loan.max_removable(USER))
        assert Decimal(0) < removable < Decimal(10)
        assert ("min_collateral", parse_units(5), 10) in loan.controller.calls

    def test_remove_collateral_in_liquidation(self, loan):
        loan.controller.states[USER] = make_state(collateral="10", borrowed="1", debt="5")
        with pytest.raises(LiquidationModeError):
            run(loan.remove_collateral_bands(1, USER))

    @pytest.mark.parametrize("method", ["borrow_more_max_recv", "max_removable"])
    def test_headroom_needs_loan(self, loan, method):
        args = (1, USER) if method == "borrow_more_max_recv" else (USER,)
        with pytest.raises(LoanNotFoundError):
            run(getattr(loan, method)(*args))
        assert loan.controller.count("max_borrowable") == 0
        assert loan.controller.count("min_collateral") == 0

    def test_borrow_more_in_liquidation(self, loan):
        loan.controller.states[USER] = make_state(collateral="10", borrowed="1", debt="5")
        with pytest.raises(LiquidationModeError):
            run(loan.borrow_more_bands(1, 1, USER))
        assert loan.controller.count("calculate_debt_n1") == 0

    def test_add_collateral_in_liquidation(self, loan):
        loan.controller.states[USER] = make_state(collateral="10", borrowed="1", debt="5")
        with pytest.raises(LiquidationModeError):
            run(loan.add_collateral_bands(1, USER))
        assert loan.controller.count("calculate_debt_n1") == 0

    def test_remove_collateral_health_is_negative_delta(self, loan):
        run(loan.remove_collateral_health(2, USER, full=False))
        assert loan.controller.calls[-1] == ("health_calculator", USER, -parse_units(2), 0, False, 0)


class TestRepay:
    def test_liquidation_keeps_current_bands(self, loan):
        loan.controller.states[USER] = make_state(collateral="10", borrowed="1", debt="5")
        loan.amm.bands[USER] = (7, 2)
        result = run(loan.repay_bands(1, USER))
        assert result.bands == BandRange(n1=2, n2=7)
        assert loan.controller.count("calculate_debt_n1") == 0

    def test_full_repay(self, loan):
        loan.controller.states[USER] = make_state(collateral="10", debt="5")
        result = run(loan.repay_bands(5, USER))
        assert result.is_full_repay
        assert result.bands is None

    def test_partial_repay(self, loan):
        loan.controller.states[USER] = make_state(collateral="10", debt="5", n=10)
        result = run(loan.repay_bands(3, USER))
        assert not result.is_full_repay
        assert result.bands == BandRange(n1=-8, n2=1)

    def test_full_repay_amount_has_buffer(self, loan):
        loan.controller.states[USER] = make_state(collateral="10", debt="5")
        assert run(loan.full_repay_amount(USER)) == Decimal("5.0005")

    def test_repay_health(self, loan):
        run(loan.repay_health(2, USER))
        assert loan.controller.calls[-1] == ("health_calculator", USER, 0, -parse_units(2), True, 0)

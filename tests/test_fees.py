"""
Tests for the fee model.

Covers platform fee rounding, order-level processor fee proration,
consultation splitting, and the earning split used by payout allocation.
"""

from decimal import Decimal

import pytest

from rxfinancials.errors import INVALID_INPUT, UNSAFE_SPLIT, AppError
from rxfinancials.services.fees import (
    MAX_MINOR_UNITS,
    EarningAmounts,
    FeeSchedule,
    consultation_split,
    line_fee,
    order_processor_fee,
    round_half_up,
    split_amounts,
    to_minor_units,
)
from rxfinancials.services.inputs import parse_minor_units


class TestRounding:
    def test_round_half_up(self):
        assert round_half_up(Decimal("18.75")) == 19
        assert round_half_up(Decimal("2.5")) == 3
        assert round_half_up(Decimal("2.4999")) == 2

    def test_to_minor_units(self):
        assert to_minor_units("50.00") == 5000
        assert to_minor_units("19.995") == 2000
        assert to_minor_units(12) == 1200

    def test_to_minor_units_rejects_garbage(self):
        with pytest.raises(AppError) as exc:
            to_minor_units("twelve")
        assert exc.value.code == INVALID_INPUT

    @pytest.mark.parametrize("amount", ["1e30", "92233720368547758.08", "-1e20"])
    def test_to_minor_units_rejects_amounts_beyond_bigint(self, amount):
        with pytest.raises(AppError) as exc:
            to_minor_units(amount)
        assert exc.value.code == INVALID_INPUT

    def test_round_half_up_rejects_unrepresentable_values(self):
        with pytest.raises(AppError) as exc:
            round_half_up(Decimal("1e40"))
        assert exc.value.code == INVALID_INPUT

    def test_minor_unit_input_is_capped(self):
        assert parse_minor_units(MAX_MINOR_UNITS, "amount") == MAX_MINOR_UNITS
        with pytest.raises(AppError) as exc:
            parse_minor_units(MAX_MINOR_UNITS + 1, "amount")
        assert exc.value.code == INVALID_INPUT


class TestOrderProcessorFee:
    def setup_method(self):
        self.schedule = FeeSchedule()

    def test_fee_computed_once_per_order(self):
        """$160 order: round(16000 * 2.9%) = 464, plus a single $0.30."""
        order_fee = order_processor_fee(16000, self.schedule)

        assert order_fee.percentage_fee == 464
        assert order_fee.fixed_fee == 30
        assert order_fee.total == 494

    def test_line_fee_for_largest_item(self):
        order_fee = order_processor_fee(16000, self.schedule)
        fee = line_fee(10000, order_fee, self.schedule)

        assert fee.ratio == Decimal("0.625")
        assert fee.percentage_portion == 290
        assert fee.fixed_portion == 19
        assert fee.processing_fee == 309
        assert fee.platform_fee == 1000
        assert fee.net == 8691

    def test_fixed_fee_is_distributed_not_repeated(self):
        order_fee = order_processor_fee(16000, self.schedule)
        lines = [line_fee(gross, order_fee, self.schedule) for gross in (10000, 5000, 1000)]

        fixed_total = sum(line.fixed_portion for line in lines)
        assert abs(fixed_total - 30) <= len(lines)
        assert fixed_total != 30 * len(lines)
        assert [line.net for line in lines] == [8691, 4346, 869]

    def test_free_order_has_no_fees(self):
        order_fee = order_processor_fee(0, self.schedule)
        fee = line_fee(0, order_fee, self.schedule)

        assert order_fee.total == 0
        assert fee.ratio == 0
        assert fee.platform_fee == 0
        assert fee.processing_fee == 0
        assert fee.net == 0

    def test_custom_schedule(self):
        schedule = FeeSchedule(platform_percent=Decimal("0.05"), processor_fixed_cents=0)
        order_fee = order_processor_fee(10000, schedule)
        fee = line_fee(10000, order_fee, schedule)

        assert fee.platform_fee == 500
        assert fee.processing_fee == 290


class TestConsultationSplit:
    def test_split_with_clinician(self):
        split = consultation_split(5000, FeeSchedule(), has_clinician=True)

        assert split.platform_fee == 500
        assert split.remaining == 4500
        assert split.clinician_share == 3150
        assert split.business_share == 1350

    def test_business_keeps_everything_without_clinician(self):
        split = consultation_split(5000, FeeSchedule(), has_clinician=False)

        assert split.clinician_share == 0
        assert split.business_share == 4500

    def test_odd_cent_goes_to_business(self):
        split = consultation_split(3333, FeeSchedule(), has_clinician=True)

        # platform round(333.3)=333, remaining 3000, clinician 2100
        assert split.platform_fee + split.clinician_share + split.business_share == 3333


class TestSplitAmounts:
    def test_parts_sum_to_original(self):
        original = EarningAmounts(gross=10000, platform_fee=1000, processing_fee=309, net=8691)
        remainder, part = split_amounts(original, 5000)

        assert part.net == 5000
        assert part.gross == 5753
        assert part.platform_fee == 575
        assert part.processing_fee == 178
        assert remainder.net + part.net == original.net
        assert remainder.gross + part.gross == original.gross
        assert remainder.platform_fee + part.platform_fee == original.platform_fee
        assert remainder.processing_fee + part.processing_fee == original.processing_fee
        assert remainder.gross - remainder.platform_fee - remainder.processing_fee == remainder.net

    def test_clinician_fee_split_by_same_ratio(self):
        original = EarningAmounts(gross=1000, platform_fee=0, processing_fee=0, net=1000, clinician_fee=333)
        remainder, part = split_amounts(original, 500)

        assert part.clinician_fee == 166
        assert remainder.clinician_fee == 167

    def test_unsafe_split_is_rejected(self):
        # Consultation entries carry the platform fee for audit while net == gross.
        original = EarningAmounts(gross=1350, platform_fee=500, processing_fee=0, net=1350)

        with pytest.raises(AppError) as exc:
            split_amounts(original, 675)
        assert exc.value.code == UNSAFE_SPLIT

    @pytest.mark.parametrize("take", [0, -5, 8691, 9000])
    def test_take_must_be_strictly_inside_net(self, take):
        original = EarningAmounts(gross=10000, platform_fee=1000, processing_fee=309, net=8691)

        with pytest.raises(AppError) as exc:
            split_amounts(original, take)
        assert exc.value.code == INVALID_INPUT

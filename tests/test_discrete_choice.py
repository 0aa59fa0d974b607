import math

import pytest

from discrete_choice_module import AbsoluteCostLogit, RelativeCostLogit, make_choice_function


@pytest.mark.parametrize("fn", [RelativeCostLogit(3.0), AbsoluteCostLogit(3.0, base_cost=5.0)])
def test_share_weight_reproduces_share(fn):
    weight = fn.calc_share_weight(0.3, 10.0, 0)
    assert fn.calc_unnormalized_share(weight, 10.0, 0) == pytest.approx(0.3)


def test_relative_cost_formulas():
    fn = RelativeCostLogit(2.0)
    assert fn.calc_unnormalized_share(0.5, 4.0, 0) == pytest.approx(8.0)
    assert fn.calc_share_weight(0.5, 4.0, 0) == pytest.approx(0.5 / 16.0)
    assert fn.calc_implied_cost(0.25, 8.0, 0) == pytest.approx(4.0)
    assert fn.calc_average_value(9.0, 0) == pytest.approx(3.0)


def test_absolute_cost_formulas():
    fn = AbsoluteCostLogit(2.0, base_cost=4.0)
    assert fn.calc_unnormalized_share(0.5, 2.0, 0) == pytest.approx(0.5 * math.e)
    assert fn.calc_implied_cost(0.5, 10.0, 0) == pytest.approx(10.0 + 4.0 * math.log(0.5) / 2.0)
    assert fn.calc_average_value(math.e, 0) == pytest.approx(2.0)


def test_degenerate_inputs_give_zero():
    fn = RelativeCostLogit(3.0)
    assert fn.calc_unnormalized_share(0.0, 10.0, 0) == 0.0
    assert fn.calc_share_weight(0.0, 10.0, 0) == 0.0
    assert fn.calc_implied_cost(0.0, 10.0, 0) == 0.0
    assert fn.calc_average_value(0.0, 0) == 0.0
    # cost<=0 不会产生除零
    assert fn.calc_share_weight(0.5, 0.0, 0) > 0.0


def test_zero_exponent_implied_cost_is_average():
    assert RelativeCostLogit(0.0).calc_implied_cost(0.2, 7.0, 0) == 7.0


def test_per_period_exponent_extends_last_value():
    fn = RelativeCostLogit([1.0, 2.0])
    assert fn.exponent(0) == 1.0
    assert fn.exponent(1) == 2.0
    assert fn.exponent(5) == 2.0


def test_make_choice_function():
    assert isinstance(make_choice_function("relative-cost", 3.0), RelativeCostLogit)
    fn = make_choice_function("absolute-cost", 3.0, 2.0)
    assert isinstance(fn, AbsoluteCostLogit)
    assert fn.base_cost == 2.0
    with pytest.raises(ValueError):
        make_choice_function("probit", 3.0)
    with pytest.raises(ValueError):
        AbsoluteCostLogit(3.0, base_cost=0.0)

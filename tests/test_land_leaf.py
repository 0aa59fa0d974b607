import logging

import pytest

from S1_0_schema import (
    CARBON_MARKET_NAME,
    LandConfigurationError,
    Modeltime,
    RegionContext,
    RegionInfo,
)
from discrete_choice_module import RelativeCostLogit
from land_leaf_module import LandLeaf, UnmanagedLandLeaf
from land_node_module import LandNode
from luc_emission_module import LandCarbonDensities
from luc_historical_module import LandUseHistory
from marketplace_module import Marketplace


class _NegativeWeightLogit(RelativeCostLogit):
    def calc_share_weight(self, share, cost, period):
        return -1.0


def _two_period_ctx(social=0.05, private=0.1):
    mt = Modeltime(years=[2005, 2010], final_calibration_year=2010, end_year=2050)
    return RegionContext("R1", mt, Marketplace(mt.max_period),
                         RegionInfo(social_discount_rate=social, private_discount_rate_land=private))


def test_corn_end_to_end():
    ctx = _two_period_ctx()
    leaf = LandLeaf("Corn", 2)
    leaf.set_readin_land_allocation(100.0, 0)
    leaf.set_readin_land_allocation(100.0, 1)
    leaf.land_use_history = LandUseHistory({1990: 100.0})
    leaf.carbon_calc = LandCarbonDensities(modeltime=ctx.modeltime)
    leaf.complete_init(ctx)

    leaf.set_init_shares(ctx, 200.0, 0)
    assert leaf.share[0] == pytest.approx(0.5)

    leaf.set_profit_rate(ctx, "Corn", 10.0, 0)
    assert leaf.profit_rate[0] == pytest.approx(10.0)

    leaf.calc_land_allocation(ctx, 200.0, 0)
    assert leaf.land_allocation[0] == pytest.approx(100.0)


def test_carbon_subsidy_with_price():
    # 私人折现率为 0 时两个折现因子都是 1
    ctx = _two_period_ctx(social=0.05, private=0.0)
    ctx.marketplace.create_market(CARBON_MARKET_NAME, "R1")
    ctx.marketplace.set_price(CARBON_MARKET_NAME, "R1", 50.0, 0)

    leaf = LandLeaf("Forest", 2)
    leaf.land_use_history = LandUseHistory({1990: 0.0})
    leaf.carbon_calc = LandCarbonDensities(8.0, 0.0, modeltime=ctx.modeltime)
    leaf.min_above_ground_c_density = 5.0
    leaf.complete_init(ctx)

    assert leaf.carbon_calc.get_above_ground_carbon_subsidy_discount_factor() == pytest.approx(1.0)
    expected = 3.0 * (50.0 / 2.212) * 0.05 * 1.0e6
    subsidy = leaf.get_carbon_subsidy(ctx, 0)
    assert subsidy == pytest.approx(expected)
    assert subsidy > 0.0

    leaf.set_profit_rate(ctx, "Forest", 10.0, 0)
    assert leaf.profit_rate[0] == pytest.approx(10.0 + expected)


def test_carbon_subsidy_zero_without_price(ctx, make_leaf):
    leaf = make_leaf(ctx, above=8.0)
    # 市场不存在
    assert leaf.get_carbon_subsidy(ctx, 0) == 0.0
    ctx.marketplace.create_market(CARBON_MARKET_NAME, "R1")
    ctx.marketplace.set_price(CARBON_MARKET_NAME, "R1", 0.0, 0)
    assert leaf.get_carbon_subsidy(ctx, 0) == 0.0
    ctx.marketplace.set_price(CARBON_MARKET_NAME, "R1", -5.0, 0)
    assert leaf.get_carbon_subsidy(ctx, 0) == 0.0


def test_carbon_subsidy_monotonic_in_price(ctx, make_leaf):
    leaf = make_leaf(ctx, above=8.0, below=4.0)
    ctx.marketplace.create_market(CARBON_MARKET_NAME, "R1")
    subsidies = []
    for price in (1.0, 10.0, 50.0, 200.0):
        ctx.marketplace.set_price(CARBON_MARKET_NAME, "R1", price, 0)
        subsidies.append(leaf.get_carbon_subsidy(ctx, 0))
    assert all(s >= 0.0 for s in subsidies)
    assert subsidies == sorted(subsidies)


def test_negative_adjusted_profit_clamped_to_zero(ctx, make_leaf):
    leaf = make_leaf(ctx)
    leaf.set_land_expansion_cost("land-expansion")
    ctx.marketplace.create_market("land-expansion", "R1")
    ctx.marketplace.set_price("land-expansion", "R1", 30.0, 0)
    leaf.set_profit_rate(ctx, leaf.name, 10.0, 0)
    assert leaf.profit_rate[0] == 0.0
    ctx.marketplace.set_price("land-expansion", "R1", 3.0, 0)
    leaf.set_profit_rate(ctx, leaf.name, 10.0, 0)
    assert leaf.profit_rate[0] == pytest.approx(7.0)


def test_set_init_shares_is_idempotent(ctx, make_leaf):
    leaf = make_leaf(ctx, readin=[30.0, 30.0])
    leaf.set_profit_rate(ctx, leaf.name, 4.0, 0)
    first = leaf.set_init_shares(ctx, 120.0, 0)
    share = leaf.share[0]
    second = leaf.set_init_shares(ctx, 120.0, 0)
    assert second == first == pytest.approx(0.25 * 4.0)
    assert leaf.share[0] == share == pytest.approx(0.25)


def test_set_init_shares_zero_parent(ctx, make_leaf):
    leaf = make_leaf(ctx, readin=[30.0])
    assert leaf.set_init_shares(ctx, 0.0, 0) == 0.0
    assert leaf.share[0] == 0.0


def test_profit_scaler_zero_without_calibration_signal(ctx, make_leaf):
    fn = RelativeCostLogit(3.0)
    leaf = make_leaf(ctx, readin=[50.0])
    leaf.share[0] = 0.5

    leaf.profit_rate[0] = 0.0
    leaf.calibration_profit_rate[0] = 5.0
    leaf.calculate_profit_scalers(ctx, fn, 0)
    assert leaf.profit_scaler[0] == 0.0

    leaf.profit_rate[0] = 10.0
    leaf.calibration_profit_rate[0] = 0.0
    leaf.calculate_profit_scalers(ctx, fn, 0)
    assert leaf.profit_scaler[0] == 0.0

    leaf.calibration_profit_rate[0] = 5.0
    leaf.calculate_profit_scalers(ctx, fn, 0)
    assert leaf.profit_scaler[0] == pytest.approx(fn.calc_share_weight(0.5, 10.0, 0))


def test_negative_profit_scaler_warns_and_clamps(ctx, make_leaf, caplog):
    leaf = make_leaf(ctx, name="Rice", readin=[50.0])
    leaf.share[0] = 0.5
    leaf.profit_rate[0] = 10.0
    leaf.calibration_profit_rate[0] = 5.0
    with caplog.at_level(logging.WARNING):
        leaf.calculate_profit_scalers(ctx, _NegativeWeightLogit(3.0), 0)
    assert leaf.profit_scaler[0] == 0.0
    assert "CalPrice too low" in caplog.text
    assert "R1 Rice" in caplog.text


def test_builtin_logit_zero_share_gives_zero_scaler_without_warning(ctx, make_leaf, caplog):
    leaf = make_leaf(ctx, name="Rice", readin=[0.0])
    leaf.share[0] = 0.0
    leaf.profit_rate[0] = 10.0
    leaf.calibration_profit_rate[0] = 5.0
    with caplog.at_level(logging.WARNING):
        leaf.calculate_profit_scalers(ctx, RelativeCostLogit(3.0), 0)
    assert leaf.profit_scaler[0] == 0.0
    assert "CalPrice too low" not in caplog.text


def test_new_technology_scaler_activates_at_start_period(ctx, make_leaf):
    fn = RelativeCostLogit(3.0)
    node = LandNode("crops", ctx.modeltime.max_period, choice_fn=fn)
    corn = make_leaf(ctx, name="Corn", readin=[100.0])
    biomass = make_leaf(ctx, name="Biomass", readin=[0.0])
    biomass.is_new_tech = True
    biomass.new_tech_start_year = 2020
    biomass.ghost_share_numerator = 0.25
    node.add_child(corn)
    node.add_child(biomass)

    corn.share[0] = 1.0
    corn.profit_rate[0] = 10.0
    biomass.share[0] = 0.0
    biomass.calculate_profit_scalers(ctx, fn, 0)

    start = ctx.modeltime.yr_to_per(2020)
    assert start == 2
    assert biomass.calibration_profit_rate[0] == pytest.approx(10.0)
    assert biomass.profit_scaler[start] == pytest.approx(fn.calc_share_weight(0.25, 10.0, 0))
    assert biomass.profit_scaler[0] == 0.0


def test_new_technology_skips_calibration_profit_rate(ctx, make_leaf):
    leaf = make_leaf(ctx, readin=[0.0])
    leaf.is_new_tech = True
    leaf.calculate_calibration_profit_rate(ctx, 12.0, RelativeCostLogit(3.0), 0)
    assert leaf.calibration_profit_rate[0] == 0.0
    assert leaf.avg_profit_rate_above[0] == 0.0


def test_calibration_profit_rate_uses_implied_cost(ctx, make_leaf):
    fn = RelativeCostLogit(2.0)
    leaf = make_leaf(ctx, readin=[25.0])
    leaf.share[0] = 0.25
    leaf.calculate_calibration_profit_rate(ctx, 8.0, fn, 0)
    assert leaf.calibration_profit_rate[0] == pytest.approx(8.0 * 0.25 ** 0.5)
    assert leaf.avg_profit_rate_above[0] == 8.0


def test_init_calc_carries_forward(ctx, make_leaf):
    leaf = make_leaf(ctx, readin=[10.0, 10.0])
    leaf.profit_scaler[1] = 0.3
    leaf.share[1] = 0.4
    leaf.init_calc(ctx, 2)
    assert leaf.profit_scaler[2] == 0.3
    assert leaf.share[2] == 0.4
    # 已有值不被覆盖
    leaf.profit_scaler[3] = 0.7
    leaf.init_calc(ctx, 3)
    assert leaf.profit_scaler[3] == 0.7


@pytest.mark.parametrize("period", [0, 1])
def test_init_calc_uninitialized_scaler_is_fatal(ctx, make_leaf, period):
    leaf = make_leaf(ctx, readin=[10.0, 10.0])
    if period == 1:
        leaf.profit_scaler[0] = 0.3
    with pytest.raises(LandConfigurationError):
        leaf.init_calc(ctx, period)


def test_negative_readin_is_fatal(ctx):
    leaf = LandLeaf("Corn", ctx.modeltime.max_period)
    leaf.set_readin_land_allocation(-1.0, 0)
    leaf.land_use_history = LandUseHistory({1990: 1.0})
    with pytest.raises(LandConfigurationError):
        leaf.complete_init(ctx)


def test_missing_history_is_fatal(ctx):
    leaf = LandLeaf("Corn", ctx.modeltime.max_period)
    leaf.set_readin_land_allocation(1.0, 0)
    with pytest.raises(LandConfigurationError, match="No land use history"):
        leaf.complete_init(ctx)


def test_zero_profit_contributes_no_share(ctx, make_leaf):
    fn = RelativeCostLogit(3.0)
    leaf = make_leaf(ctx, readin=[10.0])
    leaf.profit_scaler[0] = 5.0
    leaf.profit_rate[0] = 0.0
    assert leaf.calc_land_shares(ctx, fn, 0) == 0.0
    leaf.profit_rate[0] = 2.0
    assert leaf.calc_land_shares(ctx, fn, 0) == pytest.approx(5.0 * 8.0)


def test_land_allocation_is_parent_times_share(ctx, make_leaf):
    leaf = make_leaf(ctx, readin=[10.0])
    leaf.set_share(0.3, 0)
    leaf.calc_land_allocation(ctx, 150.0, 0)
    assert leaf.land_allocation[0] == pytest.approx(45.0)
    leaf.calc_land_allocation(ctx, 0.0, 0)
    assert leaf.land_allocation[0] == 0.0


@pytest.mark.parametrize("share", [1.2, -0.1, None])
def test_share_outside_unit_interval_fails(ctx, make_leaf, share):
    leaf = make_leaf(ctx, readin=[10.0])
    leaf.share[0] = share
    with pytest.raises(ValueError):
        leaf.calc_land_allocation(ctx, 100.0, 0)


def test_expansion_demand_is_incremental(ctx, make_leaf):
    ctx.marketplace.create_market("land-expansion", "R1")
    leaf = LandLeaf("Corn", ctx.modeltime.max_period)
    leaf.set_land_expansion_cost("land-expansion")
    leaf.land_use_history = LandUseHistory({1990: 0.0})
    leaf.complete_init(ctx)
    assert ctx.marketplace.get_dependency_finder().get_dependencies("land-allocator", "R1") == [
        ("land-expansion", "R1")]

    leaf.set_share(0.5, 0)
    leaf.calc_land_allocation(ctx, 200.0, 0)
    assert ctx.marketplace.get_demand("land-expansion", "R1", 0) == pytest.approx(100.0)
    leaf.calc_land_allocation(ctx, 300.0, 0)
    assert ctx.marketplace.get_demand("land-expansion", "R1", 0) == pytest.approx(150.0)
    assert leaf.last_calc_expansion_value[0] == pytest.approx(150.0)


def test_luc_emissions_registered_outside_final_accounting_year():
    ctx = _two_period_ctx()
    ctx.marketplace.create_market(CARBON_MARKET_NAME, "R1")
    leaf = LandLeaf("Corn", 2)
    leaf.land_use_history = LandUseHistory({1990: 150.0})
    leaf.carbon_calc = LandCarbonDensities(10.0, 0.0, modeltime=ctx.modeltime)
    leaf.complete_init(ctx)

    leaf.set_share(0.5, 0)
    leaf.calc_land_allocation(ctx, 200.0, 0)
    leaf.calc_luc_emissions(ctx, 0, 2005)
    # 1990→2005 每年减少 50/15 千km²，地上碳即时释放
    expected = 50.0 / 15.0 * 10.0
    assert ctx.marketplace.get_demand(CARBON_MARKET_NAME, "R1", 0) == pytest.approx(expected)

    # 终止年且不是最后一期：只计算不登记
    leaf.calc_luc_emissions(ctx, 0, 2050)
    assert ctx.marketplace.get_demand(CARBON_MARKET_NAME, "R1", 0) == pytest.approx(expected)

    # 最后一期即使在终止年也登记
    leaf.set_share(0.5, 1)
    leaf.calc_land_allocation(ctx, 200.0, 1)
    leaf.calc_luc_emissions(ctx, 1, 2050)
    assert ctx.marketplace.get_demand(CARBON_MARKET_NAME, "R1", 1) == pytest.approx(
        leaf.carbon_calc.get_net_land_use_change_emission(2010))


def test_unmanaged_leaf_profit_and_calibration_land(ctx, make_leaf):
    from S1_0_schema import LandAllocationType

    leaf = make_leaf(ctx, name="Forest", readin=[80.0], cls=UnmanagedLandLeaf)
    leaf.set_unmanaged_land_profit_rate(ctx, 6.0, 0)
    assert leaf.profit_rate[0] == pytest.approx(6.0)
    leaf.unmanaged_land_value = 2.0
    leaf.set_unmanaged_land_profit_rate(ctx, 6.0, 0)
    assert leaf.profit_rate[0] == pytest.approx(2.0)

    assert leaf.get_cal_land_allocation(LandAllocationType.UNMANAGED, 0) == 80.0
    assert leaf.get_cal_land_allocation(LandAllocationType.MANAGED, 0) == 0.0
    assert leaf.get_cal_land_allocation(LandAllocationType.ANY, 0) == 80.0


def test_get_land_allocation_checks_product_name(ctx, make_leaf):
    leaf = make_leaf(ctx, readin=[10.0])
    assert leaf.get_land_allocation("Corn", 0) == 10.0
    assert leaf.get_land_allocation("", 0) == 10.0
    with pytest.raises(ValueError):
        leaf.get_land_allocation("Wheat", 0)

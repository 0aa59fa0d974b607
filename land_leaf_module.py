# -*- coding: utf-8 -*-
"""
土地叶节点 —— 土地分配树的终端节点（一种土地用途/产品）

每期流程（由父节点驱动）：
1) set_profit_rate：技术侧给出毛利润率（$/千km²），扣除扩张成本并加上碳补贴；
2) 校准期：set_init_shares → calculate_calibration_profit_rate → calculate_profit_scalers；
3) 预测期：calc_land_shares 返回未归一化份额，父节点归一化后 set_share；
4) calc_land_allocation：份额 × 父节点面积，写入碳核算与扩张成本市场；
5) calc_luc_emissions：碳核算并把 LUC 排放挂到 CO2_LUC 市场需求上。

share / profit_scaler 使用 None 表示“未初始化”，init_calc 负责向前沿用上一期的值。
"""
from __future__ import annotations
import logging
from typing import List, Optional, TYPE_CHECKING
import xml.etree.ElementTree as ET

import numpy as np

from S1_0_schema import (
    CARBON_MARKET_NAME,
    CARBON_SUBSIDY_CONVERSION,
    DOLLAR_CONVERSION_75_90,
    LandAllocationType,
    LandConfigurationError,
    Modeltime,
    RegionContext,
)
from discrete_choice_module import DiscreteChoice
from luc_emission_module import LandCarbonDensities, get_end_year
from luc_historical_module import LandUseHistory

if TYPE_CHECKING:
    from land_node_module import LandNode

logger = logging.getLogger(__name__)


def _write_vector(parent: ET.Element, values, tag: str, modeltime: Modeltime) -> None:
    for period, value in enumerate(values):
        if value is None:
            continue
        ET.SubElement(parent, tag, year=str(modeltime.per_to_yr(period))).text = repr(float(value))


class LandLeaf:
    XML_NAME = "LandLeaf"

    def __init__(self, name: str, num_periods: int, parent: Optional["LandNode"] = None):
        self.name = name
        self.parent = parent
        n = int(num_periods)
        self.land_allocation = np.zeros(n)
        self.readin_land_allocation = np.zeros(n)
        self.share: List[Optional[float]] = [None] * n
        self.profit_rate = np.zeros(n)
        self.profit_scaler: List[Optional[float]] = [None] * n
        self.calibration_profit_rate = np.zeros(n)
        self.carbon_price_increase_rate = np.zeros(n)
        self.avg_profit_rate_above = np.zeros(n)

        self.min_above_ground_c_density = 0.0
        self.min_below_ground_c_density = 0.0
        self.is_new_tech = False
        self.new_tech_start_year = 2020
        self.ghost_share_numerator = 0.25
        self.is_land_expansion_cost = False
        self.land_expansion_cost_name = ""

        self.social_discount_rate = 0.0
        # 每期已登记到市场的需求，下一次登记时先撤回
        self.last_calc_co2_value = np.zeros(n)
        self.last_calc_expansion_value = np.zeros(n)

        self.carbon_calc: Optional[LandCarbonDensities] = None
        self.land_use_history: Optional[LandUseHistory] = None

    # ------------------------------------------------------------------
    def get_name(self) -> str:
        return self.name

    def get_num_children(self) -> int:
        return 0

    def is_unmanaged_land_leaf(self) -> bool:
        return False

    def set_land_expansion_cost(self, market_name: str) -> None:
        self.land_expansion_cost_name = market_name
        self.is_land_expansion_cost = bool(market_name)

    def set_readin_land_allocation(self, value: float, period: int) -> None:
        self.land_allocation[period] = value
        self.readin_land_allocation[period] = value

    def iter_leaves(self):
        yield self

    # ------------------------------------------------------------------
    def complete_init(self, ctx: RegionContext) -> None:
        self.social_discount_rate = ctx.info.social_discount_rate

        if self.carbon_calc is None:
            self.carbon_calc = LandCarbonDensities()
        self.carbon_calc.complete_init(ctx.info.private_discount_rate_land, ctx.modeltime)

        # 允许 0 面积，但不允许负值
        for period, value in enumerate(self.land_allocation):
            if value < 0:
                msg = (f"Negative land allocation of {value} read in for leaf {self.name} "
                       f"in {ctx.region_name} (period {period}).")
                logger.error(f"[LEAF] {msg}")
                raise LandConfigurationError(msg)

        self.init_land_use_history(ctx.region_name)

        if self.is_land_expansion_cost:
            ctx.marketplace.get_dependency_finder().add_dependency(
                "land-allocator", ctx.region_name, self.land_expansion_cost_name, ctx.region_name)

    def init_land_use_history(self, region_name: str) -> None:
        if self.land_use_history is None:
            msg = f"No land use history read in for leaf {self.name} in region {region_name}"
            logger.error(f"[LEAF] {msg}")
            raise LandConfigurationError(msg)
        self.carbon_calc.init_land_use_history(self.land_use_history)

    def init_calc(self, ctx: RegionContext, period: int) -> None:
        if period > 1:
            if self.profit_scaler[period] is None:
                self.profit_scaler[period] = self.profit_scaler[period - 1]
            # 节点内只有一个叶子时，份额不会在 calc_land_shares 中被覆盖
            if self.share[period] is None:
                self.share[period] = self.share[period - 1]

        # 第 0/1 期必须由校准显式给出
        if self.profit_scaler[period] is None:
            msg = f"Uninitialized share weight in period {period} for leaf {self.name} in region {ctx.region_name}"
            logger.error(f"[LEAF] {msg}")
            raise LandConfigurationError(msg)

    # ------------------------------------------------------------------
    def set_init_shares(self, ctx: RegionContext, land_allocation_above: float, period: int) -> float:
        """Calibration share from read-in land; returns the profit-weighted contribution."""
        if land_allocation_above > 0.0:
            self.share[period] = self.readin_land_allocation[period] / land_allocation_above
        else:
            self.share[period] = 0.0
        return self.share[period] * self.profit_rate[period]

    def set_share(self, share: float, period: int) -> None:
        self.share[period] = share

    def set_profit_rate(self, ctx: RegionContext, product_name: str, profit_rate: float, period: int) -> None:
        adjusted_profit_rate = profit_rate
        if self.is_land_expansion_cost:
            expansion_cost = ctx.marketplace.get_price(self.land_expansion_cost_name, ctx.region_name, period)
            adjusted_profit_rate = profit_rate - expansion_cost

        self.profit_rate[period] = max(adjusted_profit_rate + self.get_carbon_subsidy(ctx, period), 0.0)

    def get_carbon_subsidy(self, ctx: RegionContext, period: int) -> float:
        """
        按碳价与碳密度计算单位面积碳补贴（$/千km²）。

        只补贴高于 min*CDensity 的那部分碳密度；碳价按 1990$→1975$ 换算，
        再乘 (社会折现率 - 碳价增长率) 得到年化价值。
        """
        carbon_price = ctx.marketplace.get_price(CARBON_MARKET_NAME, ctx.region_name, period, must_exist=False)
        if carbon_price is None or carbon_price <= 0.0:
            return 0.0

        carbon_price /= DOLLAR_CONVERSION_75_90
        year = ctx.modeltime.per_to_yr(period)
        calc = self.carbon_calc
        incremental_above = calc.get_actual_above_ground_carbon_density(year) - self.min_above_ground_c_density
        incremental_below = calc.get_actual_below_ground_carbon_density(year) - self.min_below_ground_c_density

        carbon_subsidy = (incremental_above * calc.get_above_ground_carbon_subsidy_discount_factor()
                          + incremental_below * calc.get_below_ground_carbon_subsidy_discount_factor()) \
            * carbon_price * (self.social_discount_rate - self.carbon_price_increase_rate[period]) \
            * CARBON_SUBSIDY_CONVERSION

        assert carbon_subsidy >= 0.0, f"negative carbon subsidy {carbon_subsidy} for {self.name}"
        return carbon_subsidy

    def set_unmanaged_land_profit_rate(self, ctx: RegionContext, average_profit_rate: float, period: int) -> None:
        # 只对非管理土地生效
        pass

    def set_carbon_price_increase_rate(self, rate: float, period: int) -> None:
        self.carbon_price_increase_rate[period] = rate

    def set_soil_time_scale(self, time_scale: int) -> None:
        self.carbon_calc.set_soil_time_scale(time_scale)

    # ------------------------------------------------------------------
    def calculate_calibration_profit_rate(self, ctx: RegionContext, average_profit_rate_above: float,
                                          choice_fn: DiscreteChoice, period: int) -> None:
        """Profit rate implied by this leaf's share within its node and the node's average profit."""
        if self.is_new_tech:
            return
        self.avg_profit_rate_above[period] = average_profit_rate_above
        self.calibration_profit_rate[period] = choice_fn.calc_implied_cost(
            self._require_share(period), average_profit_rate_above, period)

    def calculate_profit_scalers(self, ctx: RegionContext, choice_fn: DiscreteChoice, period: int) -> None:
        if self.is_new_tech:
            self.calibration_profit_rate[period] = self.parent.get_calibration_profit_for_new_tech(period)
            new_tech_scaler = choice_fn.calc_share_weight(
                self.ghost_share_numerator, self.calibration_profit_rate[period], period)
            start_period = ctx.modeltime.yr_to_per(self.new_tech_start_year)
            self.profit_scaler[period] = 0.0
            self.profit_scaler[start_period] = new_tech_scaler
            self._clamp_profit_scaler(ctx, start_period)
        elif self.calibration_profit_rate[period] == 0 or self.profit_rate[period] == 0:
            self.profit_scaler[period] = 0.0
        else:
            self.profit_scaler[period] = choice_fn.calc_share_weight(
                self._require_share(period), self.profit_rate[period], period)

        self._clamp_profit_scaler(ctx, period)

    def _clamp_profit_scaler(self, ctx: RegionContext, period: int) -> None:
        # 标定利润率过低。内置 logit 对 share <= 0 直接返回 0，只有自定义 DiscreteChoice 会给出负值
        if self.profit_scaler[period] < 0:
            logger.warning(f"[LEAF] CalPrice too low resulting in negative share profit scaler. "
                           f"Setting scaler to zero {ctx.region_name} {self.name}")
            self.profit_scaler[period] = 0.0

    def _require_share(self, period: int) -> float:
        share = self.share[period]
        if share is None:
            raise LandConfigurationError(f"Share of leaf {self.name} uninitialized in period {period}")
        return share

    def calc_land_shares(self, ctx: RegionContext, choice_fn: DiscreteChoice, period: int) -> float:
        """Unnormalized share for the parent; non-positive profit contributes nothing."""
        if self.profit_rate[period] <= 0.0:
            scaler = 0.0
        else:
            scaler = self.profit_scaler[period]
            if scaler is None:
                raise LandConfigurationError(
                    f"Profit scaler of leaf {self.name} uninitialized in period {period}")
        return choice_fn.calc_unnormalized_share(scaler, self.profit_rate[period], period)

    # ------------------------------------------------------------------
    def calc_land_allocation(self, ctx: RegionContext, land_allocation_above: float, period: int) -> None:
        """
        土地面积 = 父节点面积 × 份额。校准期也会调用，因此校准期面积不一定等于读入值。
        """
        share = self.share[period]
        if share is None or not (0.0 <= share <= 1.0):
            raise ValueError(f"Share of leaf {self.name} must lie in [0, 1] in period {period}, got {share}")

        if land_allocation_above > 0.0:
            self.land_allocation[period] = land_allocation_above * share
        else:
            self.land_allocation[period] = 0.0

        self.carbon_calc.set_total_land_use(self.land_allocation[period], period)

        if self.is_land_expansion_cost:
            self.last_calc_expansion_value[period] = ctx.marketplace.add_to_demand(
                self.land_expansion_cost_name, ctx.region_name,
                self.land_allocation[period], self.last_calc_expansion_value[period], period, True)

    def calc_luc_emissions(self, ctx: RegionContext, period: int, end_year: int) -> None:
        self.carbon_calc.calc(period, end_year)

        # 全时域前瞻计算（终止年）不重复登记，最后一期除外
        mt = ctx.modeltime
        if end_year != get_end_year(mt) or period == mt.max_period - 1:
            luc_emissions = self.carbon_calc.get_net_land_use_change_emission(mt.per_to_yr(period))
            self.last_calc_co2_value[period] = ctx.marketplace.add_to_demand(
                CARBON_MARKET_NAME, ctx.region_name, luc_emissions, self.last_calc_co2_value[period], period, False)

    # ------------------------------------------------------------------
    def get_land_allocation(self, product_name: str, period: int) -> float:
        # 残余物输出对象调用时不带产品名
        if product_name not in (self.name, ""):
            raise ValueError(f"Leaf {self.name} asked for land allocation of {product_name}")
        return float(self.land_allocation[period])

    def get_cal_land_allocation(self, allocation_type: LandAllocationType, period: int) -> float:
        if allocation_type in (LandAllocationType.ANY, LandAllocationType.MANAGED):
            return float(self.readin_land_allocation[period])
        return 0.0

    def get_calibration_profit_for_new_tech(self, period: int) -> float:
        return 0.0

    def get_profit_for_child_with_highest_share(self, period: int) -> float:
        return float(self.profit_rate[period])

    # ------------------------------------------------------------------
    def to_input_xml(self, parent: ET.Element, modeltime: Modeltime) -> ET.Element:
        node = ET.SubElement(parent, self.XML_NAME, name=self.name)
        _write_vector(node, self.readin_land_allocation, "landAllocation", modeltime)
        ET.SubElement(node, "isNewTechnology").text = str(int(self.is_new_tech))
        if self.is_new_tech:
            ET.SubElement(node, "new-tech-start-year").text = str(self.new_tech_start_year)
            ET.SubElement(node, "ghost-share-leaf").text = repr(self.ghost_share_numerator)
        ET.SubElement(node, "minAboveGroundCDensity").text = repr(self.min_above_ground_c_density)
        ET.SubElement(node, "minBelowGroundCDensity").text = repr(self.min_below_ground_c_density)
        if self.land_expansion_cost_name:
            ET.SubElement(node, "landConstraintCurve").text = self.land_expansion_cost_name
        self._to_input_xml_derived(node)
        if self.land_use_history is not None:
            self.land_use_history.to_input_xml(node)
        if self.carbon_calc is not None:
            self.carbon_calc.to_input_xml(node)
        return node

    def _to_input_xml_derived(self, node: ET.Element) -> None:
        pass

    def to_debug_xml(self, period: int, parent: ET.Element, modeltime: Modeltime) -> ET.Element:
        node = ET.SubElement(parent, self.XML_NAME, name=self.name)
        ET.SubElement(node, "share").text = repr(self.share[period])
        ET.SubElement(node, "profit-rate").text = repr(float(self.profit_rate[period]))
        ET.SubElement(node, "profit-scaler").text = repr(self.profit_scaler[period])
        ET.SubElement(node, "cal-profit-rate").text = repr(float(self.calibration_profit_rate[period]))
        ET.SubElement(node, "landAllocation").text = repr(float(self.land_allocation[period]))
        ET.SubElement(node, "minAboveGroundCDensity").text = repr(self.min_above_ground_c_density)
        ET.SubElement(node, "minBelowGroundCDensity").text = repr(self.min_below_ground_c_density)
        ET.SubElement(node, "social-discount-rate").text = repr(self.social_discount_rate)
        _write_vector(node, self.carbon_price_increase_rate, "carbon-price-increase-rate", modeltime)
        if self.land_expansion_cost_name:
            ET.SubElement(node, "landConstraintCurve").text = self.land_expansion_cost_name
        ET.SubElement(node, "avg-profit-rate-above").text = repr(float(self.avg_profit_rate_above[period]))
        ET.SubElement(node, "is-new-tech").text = str(int(self.is_new_tech))
        if self.land_use_history is not None:
            self.land_use_history.to_debug_xml(period, node)
        if self.carbon_calc is not None:
            self.carbon_calc.to_debug_xml(period, node)
        return node


class UnmanagedLandLeaf(LandLeaf):
    """
    非管理土地（天然林、草地等）：没有技术侧利润，利润率取区域平均利润率
    （或读入的 unManagedLandValue），再加碳补贴。
    """

    XML_NAME = "UnmanagedLandLeaf"

    def __init__(self, name: str, num_periods: int, parent: Optional["LandNode"] = None):
        super().__init__(name, num_periods, parent)
        self.unmanaged_land_value = 0.0

    def is_unmanaged_land_leaf(self) -> bool:
        return True

    def set_unmanaged_land_profit_rate(self, ctx: RegionContext, average_profit_rate: float, period: int) -> None:
        base = self.unmanaged_land_value if self.unmanaged_land_value > 0.0 else average_profit_rate
        self.profit_rate[period] = max(base + self.get_carbon_subsidy(ctx, period), 0.0)

    def get_cal_land_allocation(self, allocation_type: LandAllocationType, period: int) -> float:
        if allocation_type in (LandAllocationType.ANY, LandAllocationType.UNMANAGED):
            return float(self.readin_land_allocation[period])
        return 0.0

    def _to_input_xml_derived(self, node: ET.Element) -> None:
        if self.unmanaged_land_value > 0.0:
            ET.SubElement(node, "unManagedLandValue").text = repr(self.unmanaged_land_value)

# -*- coding: utf-8 -*-
"""
土地分配树的内部节点与根节点

- LandNode：持有子节点（LandNode / LandLeaf / UnmanagedLandLeaf）与本层 logit 函数，
  负责把子节点的未归一化份额归一化并分配回子节点。
- LandAllocator：根节点，持有区域总土地面积；校准期逐期标定份额权重，
  预测期按 logit 计算份额、面积与 LUC 排放。

节点的“利润率”在预测期是本层 logit 的综合利润指数 calc_average_value(Σ未归一化份额)，
校准期该指数恰为份额权重所对应的基准值，因此节点份额权重与子节点保持一致。
"""
from __future__ import annotations
import logging
from typing import Iterator, List, Optional, Union
import xml.etree.ElementTree as ET

import numpy as np

from S1_0_schema import LandAllocationType, LandConfigurationError, Modeltime, RegionContext
from discrete_choice_module import DiscreteChoice
from land_leaf_module import LandLeaf
from luc_emission_module import get_end_year

logger = logging.getLogger(__name__)


class LandNode:
    XML_NAME = "LandNode"

    def __init__(self, name: str, num_periods: int, parent: Optional["LandNode"] = None,
                 choice_fn: Optional[DiscreteChoice] = None):
        self.name = name
        self.parent = parent
        self.choice_fn = choice_fn
        self.children: List[Union["LandNode", LandLeaf]] = []
        n = int(num_periods)
        self.land_allocation = np.zeros(n)
        self.share: List[Optional[float]] = [None] * n
        self.profit_scaler: List[Optional[float]] = [None] * n
        self.profit_rate = np.zeros(n)
        self.calibration_profit_rate = np.zeros(n)

    def get_name(self) -> str:
        return self.name

    def get_num_children(self) -> int:
        return len(self.children)

    def add_child(self, child: Union["LandNode", LandLeaf]) -> None:
        child.parent = self
        self.children.append(child)

    def iter_leaves(self) -> Iterator[LandLeaf]:
        for child in self.children:
            yield from child.iter_leaves()

    def iter_nodes(self) -> Iterator["LandNode"]:
        yield self
        for child in self.children:
            if isinstance(child, LandNode):
                yield from child.iter_nodes()

    def find_leaf(self, name: str) -> Optional[LandLeaf]:
        return next((leaf for leaf in self.iter_leaves() if leaf.get_name() == name), None)

    def is_unmanaged_land_leaf(self) -> bool:
        return False

    # ------------------------------------------------------------------
    def complete_init(self, ctx: RegionContext) -> None:
        if self.choice_fn is None:
            msg = f"No logit function for land node {self.name} in region {ctx.region_name}"
            logger.error(f"[NODE] {msg}")
            raise LandConfigurationError(msg)
        for child in self.children:
            child.complete_init(ctx)

    def init_calc(self, ctx: RegionContext, period: int) -> None:
        if period > 1:
            if self.profit_scaler[period] is None:
                self.profit_scaler[period] = self.profit_scaler[period - 1]
            if self.share[period] is None:
                self.share[period] = self.share[period - 1]
        if self.profit_scaler[period] is None:
            msg = f"Uninitialized share weight in period {period} for node {self.name} in region {ctx.region_name}"
            logger.error(f"[NODE] {msg}")
            raise LandConfigurationError(msg)
        for child in self.children:
            child.init_calc(ctx, period)

    def set_profit_rate(self, ctx: RegionContext, product_name: str, profit_rate: float, period: int) -> None:
        leaf = self.find_leaf(product_name)
        if leaf is None:
            raise KeyError(f"No land leaf named {product_name} in region {ctx.region_name}")
        leaf.set_profit_rate(ctx, product_name, profit_rate, period)

    def set_unmanaged_land_profit_rate(self, ctx: RegionContext, average_profit_rate: float, period: int) -> None:
        for child in self.children:
            child.set_unmanaged_land_profit_rate(ctx, average_profit_rate, period)

    def set_carbon_price_increase_rate(self, rate: float, period: int) -> None:
        for child in self.children:
            child.set_carbon_price_increase_rate(rate, period)

    def set_soil_time_scale(self, time_scale: int) -> None:
        for child in self.children:
            child.set_soil_time_scale(time_scale)

    def set_share(self, share: float, period: int) -> None:
        self.share[period] = share

    # ------------------------------------------------------------------
    def set_init_shares(self, ctx: RegionContext, land_allocation_above: float, period: int) -> float:
        node_land = self.get_cal_land_allocation(LandAllocationType.ANY, period)
        self.share[period] = node_land / land_allocation_above if land_allocation_above > 0.0 else 0.0
        # 子节点份额之和为 1，因此加总即为利润加权平均
        self.profit_rate[period] = sum(child.set_init_shares(ctx, node_land, period) for child in self.children)
        return self.share[period] * self.profit_rate[period]

    def calculate_calibration_profit_rate(self, ctx: RegionContext, average_profit_rate_above: float,
                                          choice_fn: DiscreteChoice, period: int) -> None:
        self.calibration_profit_rate[period] = choice_fn.calc_implied_cost(
            self.share[period] or 0.0, average_profit_rate_above, period)
        for child in self.children:
            child.calculate_calibration_profit_rate(
                ctx, self.calibration_profit_rate[period], self.choice_fn, period)

    def calculate_profit_scalers(self, ctx: RegionContext, choice_fn: DiscreteChoice, period: int) -> None:
        for child in self.children:
            child.calculate_profit_scalers(ctx, self.choice_fn, period)

        total = sum(child.calc_land_shares(ctx, self.choice_fn, period) for child in self.children)
        node_value = self.choice_fn.calc_average_value(total, period)
        share = self.share[period] or 0.0
        if total <= 0.0 or share == 0.0:
            self.profit_scaler[period] = 0.0
        else:
            self.profit_scaler[period] = choice_fn.calc_share_weight(share, node_value, period)

        if self.profit_scaler[period] < 0:
            logger.warning(f"[NODE] Negative share profit scaler for node, setting to zero "
                           f"{ctx.region_name} {self.name}")
            self.profit_scaler[period] = 0.0

    def _assign_child_shares(self, ctx: RegionContext, period: int) -> float:
        """归一化子节点份额并写回，返回未归一化份额之和"""
        unnormalized = [child.calc_land_shares(ctx, self.choice_fn, period) for child in self.children]
        total = float(sum(unnormalized))
        for child, value in zip(self.children, unnormalized):
            child.set_share(value / total if total > 0.0 else 0.0, period)
        self.profit_rate[period] = self.choice_fn.calc_average_value(total, period)
        return total

    def calc_land_shares(self, ctx: RegionContext, choice_fn: DiscreteChoice, period: int) -> float:
        total = self._assign_child_shares(ctx, period)
        scaler = self.profit_scaler[period] if total > 0.0 else 0.0
        return choice_fn.calc_unnormalized_share(scaler or 0.0, self.profit_rate[period], period)

    def calc_land_allocation(self, ctx: RegionContext, land_allocation_above: float, period: int) -> None:
        share = self.share[period]
        if share is None or not (0.0 <= share <= 1.0):
            raise ValueError(f"Share of node {self.name} must lie in [0, 1] in period {period}, got {share}")
        self.land_allocation[period] = land_allocation_above * share if land_allocation_above > 0.0 else 0.0
        for child in self.children:
            child.calc_land_allocation(ctx, self.land_allocation[period], period)

    def calc_luc_emissions(self, ctx: RegionContext, period: int, end_year: int) -> None:
        for child in self.children:
            child.calc_luc_emissions(ctx, period, end_year)

    # ------------------------------------------------------------------
    def get_land_allocation(self, product_name: str, period: int) -> float:
        if product_name in (self.name, ""):
            return float(self.land_allocation[period])
        leaf = self.find_leaf(product_name)
        return leaf.get_land_allocation(product_name, period) if leaf is not None else 0.0

    def get_cal_land_allocation(self, allocation_type: LandAllocationType, period: int) -> float:
        return float(sum(child.get_cal_land_allocation(allocation_type, period) for child in self.children))

    def _child_with_highest_share(self, period: int):
        candidates = [c for c in self.children
                      if not getattr(c, 'is_new_tech', False) and c.share[period] is not None]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.share[period])

    def get_calibration_profit_for_new_tech(self, period: int) -> float:
        """新技术叶子借用同节点内份额最大的子节点的利润率"""
        return self.get_profit_for_child_with_highest_share(period)

    def get_profit_for_child_with_highest_share(self, period: int) -> float:
        child = self._child_with_highest_share(period)
        if child is None:
            return 0.0
        return child.get_profit_for_child_with_highest_share(period)

    # ------------------------------------------------------------------
    def _choice_fn_to_xml(self, node: ET.Element, modeltime: Modeltime) -> None:
        fn = self.choice_fn
        if fn is None:
            return
        ET.SubElement(node, "logit-type").text = getattr(fn, 'TYPE_NAME', 'relative-cost')
        exponent = fn.logit_exponent
        if np.isscalar(exponent):
            ET.SubElement(node, "logit-exponent").text = repr(float(exponent))
        else:
            for period, value in enumerate(exponent):
                ET.SubElement(node, "logit-exponent",
                              year=str(modeltime.per_to_yr(period))).text = repr(float(value))
        if hasattr(fn, 'base_cost'):
            ET.SubElement(node, "base-cost").text = repr(fn.base_cost)

    def to_input_xml(self, parent: ET.Element, modeltime: Modeltime) -> ET.Element:
        node = ET.SubElement(parent, self.XML_NAME, name=self.name)
        self._choice_fn_to_xml(node, modeltime)
        self._to_input_xml_derived(node)
        for child in self.children:
            child.to_input_xml(node, modeltime)
        return node

    def _to_input_xml_derived(self, node: ET.Element) -> None:
        pass

    def to_debug_xml(self, period: int, parent: ET.Element, modeltime: Modeltime) -> ET.Element:
        node = ET.SubElement(parent, self.XML_NAME, name=self.name)
        ET.SubElement(node, "share").text = repr(self.share[period])
        ET.SubElement(node, "profit-scaler").text = repr(self.profit_scaler[period])
        ET.SubElement(node, "profit-rate").text = repr(float(self.profit_rate[period]))
        ET.SubElement(node, "cal-profit-rate").text = repr(float(self.calibration_profit_rate[period]))
        ET.SubElement(node, "landAllocation").text = repr(float(self.land_allocation[period]))
        for child in self.children:
            child.to_debug_xml(period, node, modeltime)
        return node


class LandAllocator(LandNode):
    XML_NAME = "LandAllocatorRoot"

    def __init__(self, name: str, num_periods: int, choice_fn: Optional[DiscreteChoice] = None):
        super().__init__(name, num_periods, None, choice_fn)
        # 根节点没有上层 logit
        self.share = [1.0] * num_periods
        self.profit_scaler = [1.0] * num_periods
        self.soil_time_scale: Optional[int] = None

    def complete_init(self, ctx: RegionContext) -> None:
        names = [leaf.get_name() for leaf in self.iter_leaves()]
        dup = sorted({n for n in names if names.count(n) > 1})
        if dup:
            msg = f"Duplicate land leaf names in region {ctx.region_name}: {dup}"
            logger.error(f"[NODE] {msg}")
            raise LandConfigurationError(msg)
        super().complete_init(ctx)
        if self.soil_time_scale is not None:
            self.set_soil_time_scale(self.soil_time_scale)
        logger.info(f"[NODE] {ctx.region_name}: 初始化完成，{len(names)} 个叶节点")

    def _average_managed_profit_rate(self, ctx: RegionContext, period: int) -> float:
        leaves = [leaf for leaf in self.iter_leaves() if not leaf.is_unmanaged_land_leaf()]
        if period <= ctx.modeltime.final_calibration_period or period == 0:
            weights = np.array([leaf.readin_land_allocation[period] for leaf in leaves])
        else:
            weights = np.array([leaf.land_allocation[period - 1] for leaf in leaves])
        profits = np.array([leaf.profit_rate[period] for leaf in leaves])
        if len(leaves) == 0 or weights.sum() <= 0.0:
            return 0.0
        return float((weights * profits).sum() / weights.sum())

    def init_calc(self, ctx: RegionContext, period: int) -> None:
        if period <= ctx.modeltime.final_calibration_period:
            self.calibrate_land_allocator(ctx, period)
        else:
            self.land_allocation[period] = self.land_allocation[period - 1]
            self.set_unmanaged_land_profit_rate(ctx, self._average_managed_profit_rate(ctx, period), period)
        for child in self.children:
            child.init_calc(ctx, period)

    def calibrate_land_allocator(self, ctx: RegionContext, period: int) -> None:
        total_land = self.get_cal_land_allocation(LandAllocationType.ANY, period)
        self.land_allocation[period] = total_land

        self.set_unmanaged_land_profit_rate(ctx, self._average_managed_profit_rate(ctx, period), period)

        avg_profit = sum(child.set_init_shares(ctx, total_land, period) for child in self.children)
        self.profit_rate[period] = avg_profit
        self.calibration_profit_rate[period] = avg_profit

        for child in self.children:
            child.calculate_calibration_profit_rate(ctx, avg_profit, self.choice_fn, period)
        for child in self.children:
            child.calculate_profit_scalers(ctx, self.choice_fn, period)
        logger.info(f"[NODE] {ctx.region_name}: 第 {period} 期校准完成，总面积 {total_land:.3f}，"
                    f"平均利润率 {avg_profit:.3f}")

    def calc_final_land_allocation(self, ctx: RegionContext, period: int) -> None:
        self._assign_child_shares(ctx, period)
        for child in self.children:
            child.calc_land_allocation(ctx, self.land_allocation[period], period)
        self.calc_luc_emissions(ctx, period, ctx.modeltime.per_to_yr(period))

    def post_calc(self, ctx: RegionContext, period: int) -> None:
        """全时域（至碳核算终止年）的 LUC 计算"""
        self.calc_luc_emissions(ctx, period, get_end_year(ctx.modeltime))

    def _to_input_xml_derived(self, node: ET.Element) -> None:
        if self.soil_time_scale is not None:
            ET.SubElement(node, "soilTimeScale").text = str(self.soil_time_scale)

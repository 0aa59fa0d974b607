# -*- coding: utf-8 -*-
"""
S3.5_land_use_change — 区域土地分配驱动（含"土地碳价"补贴）

逐期流程（每个区域）：
1) 写入碳价与碳价增长率；
2) 推送各管理土地叶节点的毛利润率；
3) LandAllocator.init_calc：校准期标定份额权重，随后逐项向前沿用并检查；
4) LandAllocator.calc_final_land_allocation：份额 → 面积 → 当期 LUC 排放；
5) 最后一期之后 post_calc：计算至碳核算终止年的全时域 LUC。
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
import pandas as pd

from S1_0_schema import LandConfigurationError, RegionContext
from S2_0_load_data import RegionSetup, ScenarioSetup
from S3_6_scenarios import apply_carbon_price_path, carbon_price_increase_rates
from land_node_module import LandAllocator
from marketplace_module import Marketplace

logger = logging.getLogger(__name__)


@dataclass
class LUCConfig:
    scenario_id: str = 'BASE'
    # 没有利润率记录的管理土地叶节点取该值；None 表示保持 0（不参与分配）
    default_profit_rate: Optional[float] = None
    # 扩张成本市场价格 {market_name: price}
    expansion_cost_by_market: Dict[str, float] = field(default_factory=dict)
    run_post_calc: bool = True


def _lc(df: pd.DataFrame) -> pd.DataFrame:
    z = df.copy(); z.columns = [str(c).strip() for c in z.columns]; return z


def profit_rates_for_period(profit_df: pd.DataFrame, region: str, year: int) -> Dict[str, float]:
    """
    取某区域某年的毛利润率 {leaf: profit_rate}。

    表中年份与模型年份不一致时按叶节点线性插值，超出范围取端点值。
    """
    if profit_df is None or profit_df.empty:
        return {}
    d = _lc(profit_df)
    mask = d['region'].isna() | (d['region'].astype(str) == region)
    d = d[mask]
    out: Dict[str, float] = {}
    for leaf, grp in d.groupby('leaf'):
        grp = grp.sort_values('year')
        out[str(leaf)] = float(np.interp(float(year), grp['year'].astype(float), grp['profit_rate'].astype(float)))
    return out


def apply_profit_rates(allocator: LandAllocator, ctx: RegionContext, profit_df: Optional[pd.DataFrame],
                       period: int, cfg: Optional[LUCConfig] = None) -> int:
    """把毛利润率推送到管理土地叶节点，返回写入的叶节点数"""
    cfg = cfg or LUCConfig()
    year = ctx.modeltime.per_to_yr(period)
    rates = profit_rates_for_period(profit_df, ctx.region_name, year)
    n = 0
    for leaf in allocator.iter_leaves():
        if leaf.is_unmanaged_land_leaf():
            continue
        rate = rates.pop(leaf.get_name(), cfg.default_profit_rate)
        if rate is None:
            continue
        allocator.set_profit_rate(ctx, leaf.get_name(), rate, period)
        n += 1
    for name in rates:
        logger.warning(f"[RUN] {ctx.region_name} {year}: 利润率表中的 {name} 不是管理土地叶节点，已忽略")
    return n


def _create_expansion_markets(allocator: LandAllocator, ctx: RegionContext, cfg: LUCConfig) -> None:
    for leaf in allocator.iter_leaves():
        if not leaf.is_land_expansion_cost:
            continue
        name = leaf.land_expansion_cost_name
        if not ctx.marketplace.has_market(name, ctx.region_name):
            ctx.marketplace.create_market(name, ctx.region_name)
        price = cfg.expansion_cost_by_market.get(name, 0.0)
        for period in range(ctx.modeltime.max_period):
            ctx.marketplace.set_price(name, ctx.region_name, price, period)


def run_region(region: RegionSetup, scenario: ScenarioSetup, marketplace: Marketplace,
               profit_df: Optional[pd.DataFrame] = None,
               carbon_prices_by_year: Optional[Dict[int, float]] = None,
               cfg: Optional[LUCConfig] = None) -> RegionContext:
    cfg = cfg or LUCConfig()
    modeltime = scenario.modeltime
    ctx = RegionContext(region_name=region.name, modeltime=modeltime,
                        marketplace=marketplace, info=region.info)
    allocator = region.allocator

    allocator.complete_init(ctx)
    _create_expansion_markets(allocator, ctx, cfg)
    prices = apply_carbon_price_path(marketplace, modeltime, region.name, carbon_prices_by_year)
    increase_rates = carbon_price_increase_rates(prices, modeltime)
    # 增长率高于社会折现率时碳补贴为负
    max_rate = float(increase_rates.max(initial=0.0))
    if max_rate > region.info.social_discount_rate:
        year = modeltime.per_to_yr(int(np.argmax(increase_rates)))
        msg = (f"Carbon price increase rate {max_rate:.4f} in {year} exceeds the social discount rate "
               f"{region.info.social_discount_rate:.4f} of region {region.name}")
        logger.error(f"[RUN] {msg}")
        raise LandConfigurationError(msg)

    for period in range(modeltime.max_period):
        year = modeltime.per_to_yr(period)
        allocator.set_carbon_price_increase_rate(float(increase_rates[period]), period)
        apply_profit_rates(allocator, ctx, profit_df, period, cfg)
        allocator.init_calc(ctx, period)
        allocator.calc_final_land_allocation(ctx, period)
        logger.info(f"[RUN] {region.name} {year}: 总面积 {allocator.land_allocation[period]:.3f}, "
                    f"碳价 {prices[period]:.2f}")

    if cfg.run_post_calc:
        allocator.post_calc(ctx, modeltime.max_period - 1)
    return ctx


def run_scenario(scenario: ScenarioSetup, profit_df: Optional[pd.DataFrame] = None,
                 carbon_prices_by_region: Optional[Dict[str, Dict[int, float]]] = None,
                 cfg: Optional[LUCConfig] = None) -> Dict[str, RegionContext]:
    """按区域依次运行；所有区域共享一个市场"""
    cfg = cfg or LUCConfig()
    marketplace = Marketplace(scenario.modeltime.max_period)
    contexts: Dict[str, RegionContext] = {}
    for region in scenario.regions:
        prices = (carbon_prices_by_region or {}).get(region.name)
        contexts[region.name] = run_region(region, scenario, marketplace, profit_df, prices, cfg)
    return contexts

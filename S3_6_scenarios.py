# -*- coding: utf-8 -*-
"""
S3.6_scenarios.py — 读取/应用“情景配置”表（Scenario_config.xlsx），生成碳价路径
支持维度：Region（All/逐区域）
支持 Unit: 'amount'（目标年的绝对碳价，1990$/tC，从起始年碳价 base_value 线性爬升，之后保持）、
          'rate'（碳价年增长率，从起始年碳价 base_value 复利增长）
示例类型：
- Land carbon price （amount）：2020 年 100 $/tC 线性升至 2080 年 150 $/tC，2080 之后保持 150
- Land carbon price （rate）：2020 年 10 $/tC，每年增长 1.5%

碳价年化增长率不得高于区域社会折现率（默认 0.02），否则碳补贴为负，运行以配置错误终止。
从 0 起步的 amount 爬升在起步后几期增长率很高，需要给出 base_value。

碳价写入 CO2_LUC 市场；相邻两期之间的年化增长率作为碳价增长率推送给叶节点。
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from S1_0_schema import CARBON_MARKET_NAME, Modeltime
from marketplace_module import Marketplace

logger = logging.getLogger(__name__)

CARBON_PRICE_KINDS = ('land_carbon_price', 'land_co2_price', 'carbon_price')


@dataclass
class ScenarioEffect:
    scenario_id: str
    kind: str                 # 'land_carbon_price'
    unit: str                 # 'amount' or 'rate'
    value: float              # amount: 目标年碳价；rate: 年增长率
    region_sel: str = 'All'   # 'All' or specific region
    start_year: int = 2020
    target_year: int = 2080
    base_value: float = 0.0   # 起始年的碳价

    def applies_to(self, region: str) -> bool:
        return not self.region_sel or str(self.region_sel).lower() == 'all' or str(self.region_sel) == region


def _linear_path(eff: ScenarioEffect, years: List[int]) -> Dict[int, float]:
    # 返回 {year: price}；起始年之前为 0，起始年为 base_value
    out: Dict[int, float] = {}
    span = max(eff.target_year - eff.start_year, 1)
    for y in years:
        if y < eff.start_year:
            out[y] = 0.0
        elif eff.unit == 'rate':
            out[y] = eff.base_value * (1.0 + eff.value) ** (y - eff.start_year)
        else:
            frac = min((y - eff.start_year) / span, 1.0)
            out[y] = eff.base_value + (eff.value - eff.base_value) * frac
    return out


def load_scenarios(xlsx_path: str, sheet: str = 'Scenario') -> List[ScenarioEffect]:
    try:
        df = pd.read_excel(xlsx_path, sheet_name=sheet)
    except FileNotFoundError:
        logger.warning(f"[SCEN] 情景配置表不存在: {xlsx_path}，不施加碳价")
        return []
    df.columns = [str(c).strip() for c in df.columns]
    cols = {c.lower(): c for c in df.columns}
    col_id = cols.get('scenario id', 'Scenario ID')
    col_type = cols.get('scenario element') or cols.get('scenario type', 'Scenario Type')
    col_unit = cols.get('scenario unit', 'Scenario Unit')
    col_val = cols.get('value', 'Value')
    col_reg = cols.get('region') or cols.get('country')
    col_start = cols.get('start year')
    col_target = cols.get('target year')
    col_base = cols.get('base value')
    missing = [c for c in (col_id, col_type, col_unit, col_val) if c not in df.columns]
    if missing:
        raise KeyError(f"情景配置表缺少列: {missing}")

    effects: List[ScenarioEffect] = []
    for r in df.to_dict('records'):
        eff = ScenarioEffect(
            scenario_id=str(r[col_id]).strip(),
            kind=str(r[col_type]).strip().lower().replace(' ', '_'),
            unit=str(r[col_unit]).strip().lower(),
            value=float(r[col_val]),
            region_sel=str(r[col_reg]).strip() if col_reg and pd.notna(r[col_reg]) else 'All',
        )
        if col_start and pd.notna(r[col_start]):
            eff.start_year = int(r[col_start])
        if col_target and pd.notna(r[col_target]):
            eff.target_year = int(r[col_target])
        if col_base and pd.notna(r[col_base]):
            eff.base_value = float(r[col_base])
        effects.append(eff)
    logger.info(f"[SCEN] 读取情景配置 {len(effects)} 条")
    return effects


def carbon_price_path(effects: List[ScenarioEffect], scenario_id: str, region: str,
                      years: List[int]) -> Dict[int, float]:
    """情景 × 区域的碳价路径；多条碳价效应时取最后一条（表中靠后者覆盖靠前者）"""
    out: Dict[int, float] = {}
    for eff in effects:
        if eff.scenario_id != scenario_id or eff.kind not in CARBON_PRICE_KINDS:
            continue
        if not eff.applies_to(region):
            continue
        if eff.unit not in ('amount', 'rate'):
            logger.warning(f"[SCEN] 未知单位 {eff.unit}（{eff.scenario_id}），跳过")
            continue
        out = _linear_path(eff, years)
    return out


def price_table_to_path(price_df: pd.DataFrame, region: str) -> Dict[int, float]:
    """碳价长表（region, year, price）→ {year: price}；region 为空的行对所有区域生效"""
    mask = price_df['region'].isna() | (price_df['region'].astype(str) == region)
    sub = price_df[mask]
    return {int(y): float(p) for y, p in zip(sub['year'], sub['price'])}


def _prices_per_period(modeltime: Modeltime, prices_by_year: Optional[Dict[int, float]]) -> np.ndarray:
    if not prices_by_year:
        return np.zeros(modeltime.max_period)
    xp = np.array(sorted(prices_by_year), dtype=float)
    fp = np.array([prices_by_year[int(y)] for y in xp], dtype=float)
    # 第一个给定年份之前为 0，最后一个之后保持
    return np.interp(np.asarray(modeltime.years, dtype=float), xp, fp, left=0.0)


def apply_carbon_price_path(marketplace: Marketplace, modeltime: Modeltime, region: str,
                            prices_by_year: Optional[Dict[int, float]] = None) -> np.ndarray:
    """创建 CO2_LUC 市场并逐期写入碳价，返回逐期碳价"""
    if not marketplace.has_market(CARBON_MARKET_NAME, region):
        marketplace.create_market(CARBON_MARKET_NAME, region)
    prices = _prices_per_period(modeltime, prices_by_year)
    for period, price in enumerate(prices):
        marketplace.set_price(CARBON_MARKET_NAME, region, float(price), period)
    if prices.any():
        logger.info(f"[SCEN] {region}: 碳价 " +
                    ", ".join(f"{y}={p:.1f}" for y, p in zip(modeltime.years, prices)))
    return prices


def carbon_price_increase_rates(prices, modeltime: Modeltime) -> np.ndarray:
    """
    相邻两期碳价的年化增长率：(p_t / p_{t-1})^(1/Δt) - 1；
    上一期碳价为 0 或为第 0 期时为 0。
    """
    prices = np.asarray(prices, dtype=float)
    rates = np.zeros(len(prices))
    for period in range(1, len(prices)):
        prev, cur = prices[period - 1], prices[period]
        if prev > 0.0 and cur > 0.0:
            rates[period] = (cur / prev) ** (1.0 / modeltime.timestep(period)) - 1.0
    return rates

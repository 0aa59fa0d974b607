# -*- coding: utf-8 -*-
"""
简化市场模块：只保存价格与需求，不做价格求解

- 需求采用“撤回旧值 + 写入新值”的增量协议：add_to_demand 会把 (new - previous)
  加到市场需求上，并返回 new，调用方需保存它以供下一次调用。
- 多个区域可以共享同一个市场（market_region）。
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass
class Market:
    good_name: str
    market_region: str
    prices: np.ndarray
    demands: np.ndarray
    regions: Set[str] = field(default_factory=set)


class DependencyFinder:
    """Records which markets an item depends on (dependent → dependency)."""

    def __init__(self) -> None:
        self._deps: Set[Tuple[str, str, str, str]] = set()

    def add_dependency(self, dependent: str, dependent_region: str,
                       dependency: str, dependency_region: str) -> bool:
        key = (dependent, dependent_region, dependency, dependency_region)
        is_new = key not in self._deps
        self._deps.add(key)
        return is_new

    def get_dependencies(self, dependent: str, dependent_region: str) -> List[Tuple[str, str]]:
        return sorted((d[2], d[3]) for d in self._deps
                      if d[0] == dependent and d[1] == dependent_region)


class Marketplace:
    def __init__(self, num_periods: int):
        self.num_periods = int(num_periods)
        self._markets: Dict[Tuple[str, str], Market] = {}
        self._dependency_finder = DependencyFinder()

    def create_market(self, good_name: str, region: str, market_region: Optional[str] = None) -> bool:
        """Create (or join) a market; returns True when a new market object was created."""
        market_region = market_region or region
        market = next((m for m in self._markets.values()
                       if m.good_name == good_name and m.market_region == market_region), None)
        created = market is None
        if created:
            market = Market(good_name=good_name, market_region=market_region,
                            prices=np.zeros(self.num_periods), demands=np.zeros(self.num_periods))
        market.regions.add(region)
        self._markets[(good_name, region)] = market
        return created

    def has_market(self, good_name: str, region: str) -> bool:
        return (good_name, region) in self._markets

    def _locate(self, good_name: str, region: str, must_exist: bool) -> Optional[Market]:
        market = self._markets.get((good_name, region))
        if market is None and must_exist:
            logger.error(f"[MARKET] 市场不存在: {good_name} in {region}")
            raise KeyError(f"No market for {good_name} in region {region}")
        return market

    def set_price(self, good_name: str, region: str, price: float, period: int) -> None:
        self._locate(good_name, region, True).prices[period] = price

    def get_price(self, good_name: str, region: str, period: int, must_exist: bool = True) -> Optional[float]:
        """Market price, or None when the market is missing and `must_exist` is False."""
        market = self._locate(good_name, region, must_exist)
        if market is None:
            return None
        return float(market.prices[period])

    def add_to_demand(self, good_name: str, region: str, new_demand: float, previous_demand: float,
                      period: int, must_exist: bool = True) -> float:
        market = self._locate(good_name, region, must_exist)
        if market is not None:
            market.demands[period] += new_demand - previous_demand
        return new_demand

    def get_demand(self, good_name: str, region: str, period: int) -> float:
        return float(self._locate(good_name, region, True).demands[period])

    def get_dependency_finder(self) -> DependencyFinder:
        return self._dependency_finder

    def to_frame(self, years: Optional[List[int]] = None) -> pd.DataFrame:
        rows = []
        seen = set()
        for market in self._markets.values():
            if id(market) in seen:
                continue
            seen.add(id(market))
            for period in range(self.num_periods):
                rows.append({
                    'market': market.good_name,
                    'market_region': market.market_region,
                    'period': period,
                    'year': years[period] if years else period,
                    'price': float(market.prices[period]),
                    'demand': float(market.demands[period]),
                })
        return pd.DataFrame(rows, columns=['market', 'market_region', 'period', 'year', 'price', 'demand'])

# -*- coding: utf-8 -*-
"""
S1.0_schema — 基础数据结构：模型时间、区域信息、逐期调用上下文

所有逐期方法都显式接收 RegionContext（区域名、模型时间、市场、区域参数），
不再依赖全局 scenario 单例。
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from marketplace_module import Marketplace

# 碳市场名称（LUC 排放需求与碳价都挂在这个市场上）
CARBON_MARKET_NAME = "CO2_LUC"
# 碳价为 1990$，土地利润为 1975$
DOLLAR_CONVERSION_75_90 = 2.212
# kgC/m2 * $/tC → $/thous km2：乘 1e9（m2→billion m2）再除 1e3（kgC→tC）
CARBON_SUBSIDY_CONVERSION = 1.0e6
# 碳核算起始年份（土地利用历史最早可追溯到此）
CARBON_START_YEAR = 1700


class LandConfigurationError(ValueError):
    """Unrecoverable land allocator configuration problem."""


class LandAllocationType(Enum):
    ANY = "any"
    MANAGED = "managed"
    UNMANAGED = "unmanaged"


@dataclass
class Modeltime:
    years: List[int]
    final_calibration_year: Optional[int] = None
    end_year: Optional[int] = None

    def __post_init__(self) -> None:
        self.years = sorted(int(y) for y in self.years)
        if not self.years:
            raise LandConfigurationError("Modeltime needs at least one period year")
        if self.final_calibration_year is None:
            self.final_calibration_year = self.years[0]
        if self.end_year is None:
            self.end_year = self.years[-1]

    @property
    def max_period(self) -> int:
        return len(self.years)

    @property
    def start_year(self) -> int:
        return self.years[0]

    @property
    def final_calibration_period(self) -> int:
        return self.yr_to_per(self.final_calibration_year)

    def per_to_yr(self, period: int) -> int:
        return self.years[period]

    def yr_to_per(self, year: int) -> int:
        """Period containing `year`: exact match, else the first period at or after it."""
        year = int(year)
        for period, y in enumerate(self.years):
            if y >= year:
                return period
        return self.max_period - 1

    def timestep(self, period: int) -> int:
        if period == 0:
            return 1
        return self.years[period] - self.years[period - 1]


@dataclass
class RegionInfo:
    social_discount_rate: float = 0.02
    private_discount_rate_land: float = 0.1


@dataclass
class RegionContext:
    region_name: str
    modeltime: Modeltime
    marketplace: "Marketplace"
    info: RegionInfo = field(default_factory=RegionInfo)

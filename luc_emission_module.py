# -*- coding: utf-8 -*-
"""
土地碳密度与 LUC 簿记模块（单个土地叶节点拥有一个实例）

功能总览
---------
1) **碳密度**：地上/地下碳密度（kgC/m²），成熟年龄 mature_age，土壤时间尺度 soil_time_scale。
2) **碳补贴折现因子**：由土地私人折现率 r 计算，供叶节点换算碳补贴：
   - 地上：1 / (1+r)^(mature_age/2)
   - 地下：1 / (1+r)^(soil_time_scale/2)
3) **逐年土地序列**：模型起始年之前取 LandUseHistory，模型各期之间线性插值，
   当前期之后保持当前期面积直到核算终止年。
4) **池响应**：
   - 地上：面积减少 → 当年瞬时排放；面积增加 → 按时间常数 mature_age 指数逼近吸收；
   - 地下：增减均按时间常数 soil_time_scale 指数逼近。
   每次 calc 都从头重算整条排放序列，结果只取决于当前已设定的面积。

重要的量纲与约定
----------------
- 面积：千 km²；密度：kgC/m²；千 km² × kgC/m² = 10⁹ kg = MtC。
- 排放为正表示向大气释放，负值为吸收。
- 输出 tCO₂ 时乘以 44/12（见 TC2CO2）。
"""
from __future__ import annotations
import logging
from typing import Optional, Tuple
import xml.etree.ElementTree as ET

import numpy as np
import pandas as pd

from S1_0_schema import CARBON_START_YEAR, Modeltime
from luc_historical_module import LandUseHistory

logger = logging.getLogger(__name__)

TC2CO2 = 44.0 / 12.0


def get_start_year() -> int:
    return CARBON_START_YEAR


def get_end_year(modeltime: Modeltime) -> int:
    """碳核算终止年（全时域前瞻计算用到的年份）"""
    return int(modeltime.end_year)


def _response_kernel(n: int, tau: float) -> np.ndarray:
    """第 t 年完成的比例：exp(-t/τ) - exp(-(t+1)/τ)；τ<=1 视为当年全部完成。"""
    kernel = np.zeros(n)
    if n == 0:
        return kernel
    if tau <= 1.0:
        kernel[0] = 1.0
        return kernel
    t = np.arange(n, dtype=float)
    return np.exp(-t / tau) - np.exp(-(t + 1.0) / tau)


class LandCarbonDensities:
    XML_NAME = "LandCarbonDensities"

    def __init__(self, above_ground_density: float = 0.0, below_ground_density: float = 0.0,
                 mature_age: int = 1, soil_time_scale: int = 40,
                 modeltime: Optional[Modeltime] = None):
        self.above_ground_density = float(above_ground_density)
        self.below_ground_density = float(below_ground_density)
        self.mature_age = int(mature_age)
        self.soil_time_scale = int(soil_time_scale)
        self.modeltime = modeltime
        self.private_discount_rate: Optional[float] = None
        self._above_discount = 1.0
        self._below_discount = 1.0
        self._history: Optional[LandUseHistory] = None
        self._land_by_period: Optional[np.ndarray] = None
        self._years = np.zeros(0, dtype=int)
        self._above_emissions = np.zeros(0)
        self._below_emissions = np.zeros(0)

    # ------------------------------------------------------------------
    def complete_init(self, private_discount_rate: float, modeltime: Optional[Modeltime] = None) -> None:
        if modeltime is not None:
            self.modeltime = modeltime
        if self.modeltime is None:
            raise ValueError("LandCarbonDensities.complete_init requires a Modeltime")
        self.private_discount_rate = float(private_discount_rate)
        self._above_discount = self._discount_factor(self.mature_age)
        self._below_discount = self._discount_factor(self.soil_time_scale)
        self._land_by_period = np.full(self.modeltime.max_period, np.nan)

    def _discount_factor(self, years: int) -> float:
        r = self.private_discount_rate or 0.0
        return float(1.0 / (1.0 + r) ** (max(years, 0) / 2.0))

    def init_land_use_history(self, history: LandUseHistory) -> None:
        self._history = history

    def set_soil_time_scale(self, time_scale: int) -> None:
        self.soil_time_scale = int(time_scale)
        if self.private_discount_rate is not None:
            self._below_discount = self._discount_factor(self.soil_time_scale)

    def set_total_land_use(self, land_use: float, period: int) -> None:
        self._land_by_period[period] = float(land_use)

    # ------------------------------------------------------------------
    def get_actual_above_ground_carbon_density(self, year: int) -> float:
        return self.above_ground_density

    def get_actual_below_ground_carbon_density(self, year: int) -> float:
        return self.below_ground_density

    def get_above_ground_carbon_subsidy_discount_factor(self) -> float:
        return self._above_discount

    def get_below_ground_carbon_subsidy_discount_factor(self) -> float:
        return self._below_discount

    # ------------------------------------------------------------------
    def _yearly_land(self, period: int, end_year: int) -> Tuple[np.ndarray, np.ndarray]:
        mt = self.modeltime
        first_year = mt.start_year
        if self._history is not None and self._history.min_year is not None:
            first_year = min(first_year, self._history.min_year)
        first_year = max(first_year, get_start_year())
        years = np.arange(first_year, end_year + 1)

        xp, fp = [], []
        if self._history is not None:
            for y in sorted(self._history.allocation_by_year):
                if first_year <= y < mt.start_year:
                    xp.append(y)
                    fp.append(self._history.allocation_by_year[y])
        for p in range(period + 1):
            value = self._land_by_period[p]
            if not np.isnan(value):
                xp.append(mt.per_to_yr(p))
                fp.append(value)
        if not xp:
            return years, np.zeros(len(years))
        return years, np.interp(years, np.asarray(xp, dtype=float), np.asarray(fp, dtype=float))

    def calc(self, period: int, end_year: int) -> None:
        """重算从起始年到 end_year 的逐年 LUC 排放（MtC/年）"""
        end_year = max(int(end_year), self.modeltime.per_to_yr(period))
        years, land = self._yearly_land(period, end_year)
        n = len(years)
        # >0 表示面积减少
        diff = np.zeros(n)
        diff[1:] = land[:-1] - land[1:]
        loss = np.clip(diff, 0.0, None)
        gain = np.clip(diff, None, 0.0)

        above_density = self.get_actual_above_ground_carbon_density(int(years[-1])) if n else 0.0
        below_density = self.get_actual_below_ground_carbon_density(int(years[-1])) if n else 0.0
        regrowth = np.convolve(gain * above_density, _response_kernel(n, self.mature_age))[:n]
        soil = np.convolve(diff * below_density, _response_kernel(n, self.soil_time_scale))[:n]

        self._years = years
        self._above_emissions = loss * above_density + regrowth
        self._below_emissions = soil

    def _emission_at(self, series: np.ndarray, year: int) -> float:
        if len(self._years) == 0:
            return 0.0
        idx = int(year) - int(self._years[0])
        if idx < 0 or idx >= len(series):
            return 0.0
        return float(series[idx])

    def get_net_land_use_change_emission(self, year: int) -> float:
        return self._emission_at(self._above_emissions, year) + self._emission_at(self._below_emissions, year)

    def get_net_land_use_change_emission_above(self, year: int) -> float:
        return self._emission_at(self._above_emissions, year)

    def get_net_land_use_change_emission_below(self, year: int) -> float:
        return self._emission_at(self._below_emissions, year)

    def emissions_frame(self) -> pd.DataFrame:
        df = pd.DataFrame({
            'year': self._years.astype(int),
            'above_MtC': self._above_emissions,
            'below_MtC': self._below_emissions,
        })
        df['total_MtC'] = df['above_MtC'] + df['below_MtC']
        df['total_MtCO2'] = df['total_MtC'] * TC2CO2
        return df

    # ------------------------------------------------------------------
    def to_input_xml(self, parent: ET.Element) -> ET.Element:
        node = ET.SubElement(parent, self.XML_NAME)
        ET.SubElement(node, "above-ground-carbon-density").text = repr(self.above_ground_density)
        ET.SubElement(node, "below-ground-carbon-density").text = repr(self.below_ground_density)
        ET.SubElement(node, "mature-age").text = str(self.mature_age)
        ET.SubElement(node, "soil-time-scale").text = str(self.soil_time_scale)
        return node

    def to_debug_xml(self, period: int, parent: ET.Element) -> ET.Element:
        node = self.to_input_xml(parent)
        ET.SubElement(node, "above-ground-discount-factor").text = repr(self._above_discount)
        ET.SubElement(node, "below-ground-discount-factor").text = repr(self._below_discount)
        if self.modeltime is not None:
            year = self.modeltime.per_to_yr(period)
            ET.SubElement(node, "net-luc-emission", year=str(year)).text = repr(
                self.get_net_land_use_change_emission(year))
        return node


class NoEmissCarbonCalc(LandCarbonDensities):
    """Carbon densities for subsidy purposes only; reports zero LUC emissions."""

    XML_NAME = "NoEmissCarbonCalc"

    def calc(self, period: int, end_year: int) -> None:
        end_year = max(int(end_year), self.modeltime.per_to_yr(period))
        years, _ = self._yearly_land(period, end_year)
        self._years = years
        self._above_emissions = np.zeros(len(years))
        self._below_emissions = np.zeros(len(years))

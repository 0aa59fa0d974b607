# -*- coding: utf-8 -*-
"""
S2.0_load_data — 读取情景配置（XML 层级文档）与输入表（CSV / Excel）

XML 结构
--------
<scenario name="...">
  <modeltime final-calibration-year="2005" end-year="2100">
    <year>1990</year> <year>2005</year> ...
  </modeltime>
  <region name="R1">
    <social-discount-rate>0.05</social-discount-rate>
    <private-discount-rate-land>0.1</private-discount-rate-land>
    <LandAllocatorRoot name="root">
      <logit-exponent>3</logit-exponent>
      <soilTimeScale>40</soilTimeScale>
      <LandNode name="...">  ...  </LandNode>
      <LandLeaf name="Corn"> ... </LandLeaf>
      <UnmanagedLandLeaf name="Forest"> ... </UnmanagedLandLeaf>
    </LandAllocatorRoot>
  </region>
</scenario>

未识别的字段只记 warning，不中断读取。
"""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union
import xml.etree.ElementTree as ET

import pandas as pd

from config_paths import get_input_base
from S1_0_schema import LandConfigurationError, Modeltime, RegionInfo
from discrete_choice_module import make_choice_function
from land_leaf_module import LandLeaf, UnmanagedLandLeaf
from land_node_module import LandAllocator, LandNode
from luc_emission_module import LandCarbonDensities, NoEmissCarbonCalc
from luc_historical_module import LandUseHistory

logger = logging.getLogger(__name__)


@dataclass
class DataPaths:
    base: str = get_input_base()
    scenario_xml: str = os.path.join(get_input_base(), "land_allocation_scenario.xml")
    profit_rates_csv: str = os.path.join(get_input_base(), "Profit", "land_profit_rates.csv")
    land_allocation_csv: Optional[str] = None
    land_use_history_csv: Optional[str] = None
    scenario_config_xlsx: str = os.path.join(get_input_base(), "Scenario_config.xlsx")


@dataclass
class RegionSetup:
    name: str
    info: RegionInfo
    allocator: LandAllocator


@dataclass
class ScenarioSetup:
    name: str
    modeltime: Modeltime
    regions: List[RegionSetup] = field(default_factory=list)

    def get_region(self, name: str) -> RegionSetup:
        for region in self.regions:
            if region.name == name:
                return region
        raise KeyError(f"Region {name} not found in scenario {self.name}")


# =========================================================
# 1) XML 基础工具
# =========================================================

def _text(el: ET.Element) -> str:
    return (el.text or "").strip()


def _float(el: ET.Element) -> float:
    try:
        return float(_text(el))
    except ValueError as e:
        raise LandConfigurationError(f"<{el.tag}> expects a number, got {el.text!r}") from e


def _int(el: ET.Element) -> int:
    return int(round(_float(el)))


def _bool(el: ET.Element) -> bool:
    return _text(el).lower() in ("1", "true", "yes")


def _warn_unknown(tag: str, owner: str) -> None:
    logger.warning(f"[LOAD] Unrecognized text string: {tag} found while parsing {owner}.")


def insert_value_into_vector(el: ET.Element, setter: Callable[[float, int], None], modeltime: Modeltime) -> None:
    """按 year 属性写入对应时期；fillout="1" 时向后填充所有时期。"""
    year_attr = el.get("year")
    if year_attr is None:
        logger.warning(f"[LOAD] <{el.tag}> without year attribute ignored")
        return
    year = int(year_attr)
    if year not in modeltime.years:
        logger.warning(f"[LOAD] <{el.tag} year={year}> is not a model period year, ignored")
        return
    value = _float(el)
    start = modeltime.years.index(year)
    last = modeltime.max_period if el.get("fillout") in ("1", "true") else start + 1
    for period in range(start, last):
        setter(value, period)


# =========================================================
# 2) 土地分配树
# =========================================================

def parse_modeltime(el: ET.Element) -> Modeltime:
    years = [_int(y) for y in el.findall("year")]
    final_cal = el.get("final-calibration-year")
    end_year = el.get("end-year")
    return Modeltime(years=years,
                     final_calibration_year=int(final_cal) if final_cal else None,
                     end_year=int(end_year) if end_year else None)


def parse_land_use_history(el: ET.Element) -> LandUseHistory:
    history = LandUseHistory()
    for child in el:
        if child.tag == "landAllocation":
            history.set_allocation(int(child.get("year")), _float(child))
        else:
            _warn_unknown(child.tag, LandUseHistory.XML_NAME)
    return history


def parse_carbon_calc(el: ET.Element, modeltime: Modeltime) -> LandCarbonDensities:
    calc = NoEmissCarbonCalc(modeltime=modeltime) if el.tag == NoEmissCarbonCalc.XML_NAME \
        else LandCarbonDensities(modeltime=modeltime)
    for child in el:
        tag = child.tag
        if tag == "above-ground-carbon-density":
            calc.above_ground_density = _float(child)
        elif tag == "below-ground-carbon-density":
            calc.below_ground_density = _float(child)
        elif tag == "mature-age":
            calc.mature_age = _int(child)
        elif tag == "soil-time-scale":
            calc.soil_time_scale = _int(child)
        else:
            _warn_unknown(tag, el.tag)
    return calc


def parse_land_leaf(el: ET.Element, modeltime: Modeltime) -> LandLeaf:
    cls = UnmanagedLandLeaf if el.tag == UnmanagedLandLeaf.XML_NAME else LandLeaf
    leaf = cls(el.get("name", ""), modeltime.max_period)
    for child in el:
        tag = child.tag
        if tag == "landAllocation":
            insert_value_into_vector(child, leaf.set_readin_land_allocation, modeltime)
        elif tag == "minAboveGroundCDensity":
            leaf.min_above_ground_c_density = _float(child)
        elif tag == "minBelowGroundCDensity":
            leaf.min_below_ground_c_density = _float(child)
        elif tag == "isNewTechnology":
            leaf.is_new_tech = _bool(child)
        elif tag == "ghost-share-leaf":
            leaf.ghost_share_numerator = _float(child)
        elif tag == "new-tech-start-year":
            leaf.new_tech_start_year = _int(child)
        elif tag == LandUseHistory.XML_NAME:
            leaf.land_use_history = parse_land_use_history(child)
        elif tag in (LandCarbonDensities.XML_NAME, NoEmissCarbonCalc.XML_NAME):
            leaf.carbon_calc = parse_carbon_calc(child, modeltime)
        elif tag == "landConstraintCurve":
            leaf.set_land_expansion_cost(_text(child))
        elif tag == "unManagedLandValue" and isinstance(leaf, UnmanagedLandLeaf):
            leaf.unmanaged_land_value = _float(child)
        else:
            _warn_unknown(tag, cls.XML_NAME)
    return leaf


def _parse_logit(el: ET.Element, modeltime: Modeltime, owner: str):
    exponents: Dict[int, float] = {}
    scalar: Optional[float] = None
    kind = "relative-cost"
    base_cost = 1.0
    for child in el.findall("logit-exponent"):
        if child.get("year") is not None:
            year = int(child.get("year"))
            if year in modeltime.years:
                exponents[modeltime.years.index(year)] = _float(child)
        else:
            scalar = _float(child)
    if el.find("logit-type") is not None:
        kind = _text(el.find("logit-type"))
    if el.find("base-cost") is not None:
        base_cost = _float(el.find("base-cost"))
    if scalar is None and not exponents:
        return None
    if exponents:
        # 按年份给出的指数：未给出的时期沿用前一个值
        values: List[float] = []
        current = scalar if scalar is not None else exponents[min(exponents)]
        for period in range(modeltime.max_period):
            current = exponents.get(period, current)
            values.append(current)
        exponent: Union[float, List[float]] = values
    else:
        exponent = scalar
    try:
        return make_choice_function(kind, exponent, base_cost)
    except ValueError as e:
        logger.error(f"[LOAD] {owner}: {e}")
        raise LandConfigurationError(f"{owner}: {e}") from e


_NODE_FIELDS = ("logit-exponent", "logit-type", "base-cost")


def parse_land_node(el: ET.Element, modeltime: Modeltime) -> LandNode:
    is_root = el.tag == LandAllocator.XML_NAME
    name = el.get("name", "root" if is_root else "")
    choice_fn = _parse_logit(el, modeltime, f"{el.tag} {name}")
    node = LandAllocator(name, modeltime.max_period, choice_fn) if is_root \
        else LandNode(name, modeltime.max_period, None, choice_fn)
    for child in el:
        tag = child.tag
        if tag in _NODE_FIELDS:
            continue
        if tag == LandNode.XML_NAME:
            node.add_child(parse_land_node(child, modeltime))
        elif tag in (LandLeaf.XML_NAME, UnmanagedLandLeaf.XML_NAME):
            node.add_child(parse_land_leaf(child, modeltime))
        elif tag == "soilTimeScale" and is_root:
            node.soil_time_scale = _int(child)
        else:
            _warn_unknown(tag, el.tag)
    return node


def parse_region(el: ET.Element, modeltime: Modeltime) -> RegionSetup:
    info = RegionInfo()
    allocator: Optional[LandAllocator] = None
    name = el.get("name", "")
    for child in el:
        tag = child.tag
        if tag == "social-discount-rate":
            info.social_discount_rate = _float(child)
        elif tag == "private-discount-rate-land":
            info.private_discount_rate_land = _float(child)
        elif tag == LandAllocator.XML_NAME:
            allocator = parse_land_node(child, modeltime)
        else:
            _warn_unknown(tag, "region")
    if allocator is None:
        msg = f"Region {name} has no {LandAllocator.XML_NAME}"
        logger.error(f"[LOAD] {msg}")
        raise LandConfigurationError(msg)
    return RegionSetup(name=name, info=info, allocator=allocator)


def parse_scenario(root: ET.Element) -> ScenarioSetup:
    mt_el = root.find("modeltime")
    if mt_el is None:
        raise LandConfigurationError("Scenario document has no <modeltime>")
    modeltime = parse_modeltime(mt_el)
    scenario = ScenarioSetup(name=root.get("name", "BASE"), modeltime=modeltime)
    for child in root:
        if child.tag == "modeltime":
            continue
        if child.tag == "region":
            scenario.regions.append(parse_region(child, modeltime))
        else:
            _warn_unknown(child.tag, "scenario")
    logger.info(f"[LOAD] 情景 {scenario.name}: {len(scenario.regions)} 个区域, "
                f"{modeltime.max_period} 个时期 ({modeltime.start_year}-{modeltime.years[-1]})")
    return scenario


def load_scenario_xml(path: str) -> ScenarioSetup:
    return parse_scenario(ET.parse(path).getroot())


def load_scenario_from_string(text: str) -> ScenarioSetup:
    return parse_scenario(ET.fromstring(text))


# =========================================================
# 3) 输入表（CSV / Excel）
# =========================================================

def _lc(df: pd.DataFrame) -> pd.DataFrame:
    z = df.copy(); z.columns = [str(c).strip() for c in z.columns]; return z


def _read_table(path: str, sheet_name: Optional[str] = None) -> pd.DataFrame:
    if str(path).lower().endswith(('.xlsx', '.xls')):
        return _lc(pd.read_excel(path, sheet_name=sheet_name or 0))
    return _lc(pd.read_csv(path))


def _pick(df: pd.DataFrame, *keys: str, required: bool = True) -> Optional[str]:
    for key in keys:
        hit = next((c for c in df.columns if key in c.lower()), None)
        if hit is not None:
            return hit
    if required:
        raise KeyError(f"表中找不到列 {keys}: {list(df.columns)}")
    return None


def load_profit_rates(path: str, sheet_name: Optional[str] = None) -> pd.DataFrame:
    """
    读取毛利润率长表。

    返回
    ----
    DataFrame
        列: region, leaf, year, profit_rate（$/千km²）
    """
    df = _read_table(path, sheet_name)
    rn = _pick(df, 'region', required=False)
    ln = _pick(df, 'leaf', 'land', 'product')
    yn = _pick(df, 'year')
    vn = _pick(df, 'profit', 'value')
    df = df.rename(columns={ln: 'leaf', yn: 'year', vn: 'profit_rate', **({rn: 'region'} if rn else {})})
    if 'region' not in df.columns:
        df['region'] = None
    df['year'] = pd.to_numeric(df['year'], errors='coerce')
    df['profit_rate'] = pd.to_numeric(df['profit_rate'], errors='coerce')
    n0 = len(df)
    df = df.dropna(subset=['year', 'profit_rate'])
    if len(df) < n0:
        logger.warning(f"[LOAD] 利润率表中 {n0 - len(df)} 行无法解析，已丢弃")
    df['year'] = df['year'].astype(int)
    return df[['region', 'leaf', 'year', 'profit_rate']].reset_index(drop=True)


def load_carbon_price_table(path: str, sheet_name: Optional[str] = None) -> pd.DataFrame:
    """碳价表：列 region(可选), year, price（1990$/tC）"""
    df = _read_table(path, sheet_name)
    rn = _pick(df, 'region', required=False)
    yn = _pick(df, 'year')
    vn = _pick(df, 'price', 'value')
    df = df.rename(columns={yn: 'year', vn: 'price', **({rn: 'region'} if rn else {})})
    if 'region' not in df.columns:
        df['region'] = None
    df['year'] = pd.to_numeric(df['year'], errors='coerce')
    df['price'] = pd.to_numeric(df['price'], errors='coerce').fillna(0.0)
    df = df.dropna(subset=['year'])
    df['year'] = df['year'].astype(int)
    return df[['region', 'year', 'price']].reset_index(drop=True)


def load_land_allocation_table(path: str, sheet_name: Optional[str] = None) -> pd.DataFrame:
    """读入面积覆盖表：列 region(可选), leaf, year, allocation（千 km²）"""
    df = _read_table(path, sheet_name)
    rn = _pick(df, 'region', required=False)
    ln = _pick(df, 'leaf', 'land', 'product')
    yn = _pick(df, 'year')
    vn = _pick(df, 'alloc', 'area')
    df = df.rename(columns={ln: 'leaf', yn: 'year', vn: 'allocation', **({rn: 'region'} if rn else {})})
    if 'region' not in df.columns:
        df['region'] = None
    df['year'] = pd.to_numeric(df['year'], errors='coerce').astype('Int64')
    df['allocation'] = pd.to_numeric(df['allocation'], errors='coerce')
    return df.dropna(subset=['year', 'allocation'])[['region', 'leaf', 'year', 'allocation']]


def _rows_for_region(df: pd.DataFrame, region: str) -> pd.DataFrame:
    mask = df['region'].isna() | (df['region'].astype(str) == region)
    return df[mask]


def apply_land_allocation_table(allocator: LandAllocator, df: pd.DataFrame, region: str,
                                modeltime: Modeltime) -> int:
    """用表中数值覆盖叶节点读入面积，返回写入条数"""
    n = 0
    for r in _rows_for_region(df, region).itertuples(index=False):
        leaf = allocator.find_leaf(str(r.leaf))
        year = int(r.year)
        if leaf is None or year not in modeltime.years:
            logger.warning(f"[LOAD] 面积表记录无法匹配: region={region}, leaf={r.leaf}, year={year}")
            continue
        leaf.set_readin_land_allocation(float(r.allocation), modeltime.years.index(year))
        n += 1
    logger.info(f"[LOAD] {region}: 覆盖读入面积 {n} 条")
    return n


def apply_land_use_histories(allocator: LandAllocator, histories: Dict[str, LandUseHistory]) -> int:
    n = 0
    for name, history in histories.items():
        leaf = allocator.find_leaf(name)
        if leaf is None:
            logger.warning(f"[LOAD] 历史面积找不到叶节点: {name}")
            continue
        leaf.land_use_history = history
        n += 1
    return n

# -*- coding: utf-8 -*-
"""
S4_1_results.py – 土地分配与 LUC 排放结果汇总与导出模块
=====================================
生成的表格：
- Leaf_Long:   长表（Region, Node, Leaf, Land type, Year, 面积/份额/利润率/份额权重/LUC 排放）
- Land_Area:   面积宽表（Region, Node, Leaf, Yxxxx 列），千 km²
- LUC_MtCO2:   模型各期 LUC 净排放宽表（Region, Leaf, Yxxxx 列），MtCO2
- LUC_Annual:  逐年 LUC 排放长表（至碳核算终止年），MtC / MtCO2
- Market:      市场价格与需求（CO2_LUC、扩张成本市场）

另外可输出 xarray Dataset（leaf × year）以及调试 XML / 输入 XML。
"""

from __future__ import annotations
from typing import Dict, List
import logging
import os
from pathlib import Path
import xml.etree.ElementTree as ET

import numpy as np
import pandas as pd
import xarray as xr

from S1_0_schema import Modeltime, RegionContext
from S2_0_load_data import ScenarioSetup
from land_node_module import LandAllocator
from luc_emission_module import TC2CO2

logger = logging.getLogger(__name__)

LONG_COLUMNS = ['Region', 'Node', 'Leaf', 'Land type', 'Year', 'Period', 'Land allocation',
                'Share', 'Profit rate', 'Profit scaler', 'Carbon price increase rate',
                'LUC MtC', 'LUC MtCO2']


def _opt(value) -> float:
    return np.nan if value is None else float(value)


def collect_leaf_results(allocator: LandAllocator, ctx: RegionContext) -> pd.DataFrame:
    """逐叶节点逐期结果长表"""
    mt = ctx.modeltime
    rows = []
    for leaf in allocator.iter_leaves():
        land_type = 'unmanaged' if leaf.is_unmanaged_land_leaf() else 'managed'
        for period in range(mt.max_period):
            year = mt.per_to_yr(period)
            luc = leaf.carbon_calc.get_net_land_use_change_emission(year) if leaf.carbon_calc else 0.0
            rows.append({
                'Region': ctx.region_name,
                'Node': leaf.parent.get_name() if leaf.parent is not None else '',
                'Leaf': leaf.get_name(),
                'Land type': land_type,
                'Year': year,
                'Period': period,
                'Land allocation': float(leaf.land_allocation[period]),
                'Share': _opt(leaf.share[period]),
                'Profit rate': float(leaf.profit_rate[period]),
                'Profit scaler': _opt(leaf.profit_scaler[period]),
                'Carbon price increase rate': float(leaf.carbon_price_increase_rate[period]),
                'LUC MtC': luc,
                'LUC MtCO2': luc * TC2CO2,
            })
    return pd.DataFrame(rows, columns=LONG_COLUMNS)


def collect_annual_luc(allocator: LandAllocator, region: str) -> pd.DataFrame:
    """逐年 LUC 排放（碳核算起始年 → 终止年）"""
    frames = []
    for leaf in allocator.iter_leaves():
        if leaf.carbon_calc is None:
            continue
        df = leaf.carbon_calc.emissions_frame()
        if df.empty:
            continue
        df.insert(0, 'Leaf', leaf.get_name())
        df.insert(0, 'Region', region)
        frames.append(df)
    if not frames:
        return pd.DataFrame(columns=['Region', 'Leaf', 'year', 'above_MtC', 'below_MtC',
                                     'total_MtC', 'total_MtCO2'])
    return pd.concat(frames, ignore_index=True)


def to_wide(long_df: pd.DataFrame, value_col: str, index_cols: List[str]) -> pd.DataFrame:
    """长表 → Yxxxx 宽表"""
    if long_df.empty:
        return pd.DataFrame(columns=index_cols)
    wide = long_df.pivot_table(index=index_cols, columns='Year', values=value_col, aggfunc='sum')
    wide.columns = [f"Y{int(c)}" for c in wide.columns]
    return wide.reset_index()


def sort_wide_table(df: pd.DataFrame) -> pd.DataFrame:
    key_cols = [c for c in ('Region', 'Node', 'Leaf') if c in df.columns]
    year_cols = sorted([c for c in df.columns if str(c).startswith('Y') and str(c)[1:].isdigit()],
                       key=lambda c: int(c[1:]))
    return df[key_cols + year_cols].sort_values(key_cols).reset_index(drop=True)


def build_luc_dataset(long_df: pd.DataFrame) -> xr.Dataset:
    """长表 → xarray Dataset，维度 (region, leaf, year)"""
    d = long_df.rename(columns={'Region': 'region', 'Leaf': 'leaf', 'Year': 'year',
                                'Land allocation': 'land_allocation', 'Share': 'share',
                                'Profit rate': 'profit_rate', 'LUC MtC': 'luc_mtc',
                                'LUC MtCO2': 'luc_mtco2'})
    d = d[['region', 'leaf', 'year', 'land_allocation', 'share', 'profit_rate', 'luc_mtc', 'luc_mtco2']]
    ds = d.set_index(['region', 'leaf', 'year']).to_xarray()
    ds['land_allocation'].attrs['units'] = 'thous km2'
    ds['profit_rate'].attrs['units'] = '1975$/thous km2'
    ds['luc_mtc'].attrs['units'] = 'MtC/yr'
    ds['luc_mtco2'].attrs['units'] = 'MtCO2/yr'
    return ds


def summarize_results(contexts: Dict[str, RegionContext], scenario: ScenarioSetup) -> Dict[str, pd.DataFrame]:
    long_frames, annual_frames = [], []
    for region in scenario.regions:
        ctx = contexts.get(region.name)
        if ctx is None:
            continue
        long_frames.append(collect_leaf_results(region.allocator, ctx))
        annual_frames.append(collect_annual_luc(region.allocator, region.name))
    long_df = pd.concat(long_frames, ignore_index=True) if long_frames else pd.DataFrame(columns=LONG_COLUMNS)
    annual = pd.concat(annual_frames, ignore_index=True) if annual_frames else pd.DataFrame()

    market = pd.DataFrame()
    if contexts:
        marketplace = next(iter(contexts.values())).marketplace
        market = marketplace.to_frame(scenario.modeltime.years)

    return {
        'Leaf_Long': long_df,
        'Land_Area': sort_wide_table(to_wide(long_df, 'Land allocation', ['Region', 'Node', 'Leaf'])),
        'LUC_MtCO2': sort_wide_table(to_wide(long_df, 'LUC MtCO2', ['Region', 'Leaf'])),
        'LUC_Annual': annual,
        'Market': market,
    }


def write_results(tables: Dict[str, pd.DataFrame], outdir: str, scenario_id: str) -> str:
    """写出 Excel 工作簿（openpyxl），并把长表另存为 CSV"""
    out = Path(outdir)
    out.mkdir(parents=True, exist_ok=True)
    excel_path = out / f"land_allocation_{scenario_id}.xlsx"
    logger.info(f"[RESULTS] 写出结果: {excel_path}")
    with pd.ExcelWriter(excel_path, engine='openpyxl') as writer:
        for name, df in tables.items():
            if isinstance(df, pd.DataFrame) and not df.empty:
                df.to_excel(writer, sheet_name=name[:31], index=False)
                logger.info(f"[RESULTS]   - Sheet '{name[:31]}': {len(df)} 行")
    if 'Leaf_Long' in tables:
        tables['Leaf_Long'].to_csv(out / f"land_allocation_long_{scenario_id}.csv", index=False)
    return str(excel_path)


# =========================================================
# XML 输出
# =========================================================

def _write_tree(root: ET.Element, path: str) -> str:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    tree = ET.ElementTree(root)
    ET.indent(tree)
    tree.write(path, encoding='utf-8', xml_declaration=True)
    return path


def _modeltime_to_xml(modeltime: Modeltime, parent: ET.Element) -> ET.Element:
    node = ET.SubElement(parent, 'modeltime',
                         **{'final-calibration-year': str(modeltime.final_calibration_year),
                            'end-year': str(modeltime.end_year)})
    for year in modeltime.years:
        ET.SubElement(node, 'year').text = str(year)
    return node


def scenario_to_input_xml(scenario: ScenarioSetup) -> ET.Element:
    root = ET.Element('scenario', name=scenario.name)
    _modeltime_to_xml(scenario.modeltime, root)
    for region in scenario.regions:
        reg = ET.SubElement(root, 'region', name=region.name)
        ET.SubElement(reg, 'social-discount-rate').text = repr(region.info.social_discount_rate)
        ET.SubElement(reg, 'private-discount-rate-land').text = repr(region.info.private_discount_rate_land)
        region.allocator.to_input_xml(reg, scenario.modeltime)
    return root


def write_input_xml(scenario: ScenarioSetup, path: str) -> str:
    return _write_tree(scenario_to_input_xml(scenario), path)


def write_debug_xml(scenario: ScenarioSetup, period: int, path: str) -> str:
    """某一期全部区域的调试输出"""
    mt = scenario.modeltime
    root = ET.Element('debug', scenario=scenario.name, year=str(mt.per_to_yr(period)))
    for region in scenario.regions:
        reg = ET.SubElement(root, 'region', name=region.name)
        region.allocator.to_debug_xml(period, reg, mt)
    return _write_tree(root, path)

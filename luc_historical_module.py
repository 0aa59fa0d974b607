#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
土地利用历史模块
保存单个土地叶节点在模型起始年之前的历史面积（千 km²），供碳核算回溯使用；
并提供从 CSV / Excel 长表读取历史面积的工具函数。
"""
from __future__ import annotations
from typing import Dict, Optional
import xml.etree.ElementTree as ET

import numpy as np
import pandas as pd


class LandUseHistory:
    XML_NAME = "LandUseHistory"

    def __init__(self, allocation_by_year: Optional[Dict[int, float]] = None):
        self.allocation_by_year: Dict[int, float] = {
            int(y): float(v) for y, v in (allocation_by_year or {}).items()
        }

    @property
    def min_year(self) -> Optional[int]:
        return min(self.allocation_by_year) if self.allocation_by_year else None

    @property
    def max_year(self) -> Optional[int]:
        return max(self.allocation_by_year) if self.allocation_by_year else None

    def set_allocation(self, year: int, value: float) -> None:
        self.allocation_by_year[int(year)] = float(value)

    def get_allocation(self, year: int) -> float:
        """历史面积：已知年份之间线性插值，范围外取端点值；无数据返回 0"""
        if not self.allocation_by_year:
            return 0.0
        years = np.array(sorted(self.allocation_by_year), dtype=float)
        values = np.array([self.allocation_by_year[int(y)] for y in years], dtype=float)
        return float(np.interp(float(year), years, values))

    def to_input_xml(self, parent: ET.Element) -> ET.Element:
        node = ET.SubElement(parent, self.XML_NAME)
        for year in sorted(self.allocation_by_year):
            el = ET.SubElement(node, "landAllocation", year=str(year))
            el.text = repr(self.allocation_by_year[year])
        return node

    def to_debug_xml(self, period: int, parent: ET.Element) -> ET.Element:
        node = ET.SubElement(parent, self.XML_NAME)
        ET.SubElement(node, "min-year").text = str(self.min_year)
        ET.SubElement(node, "max-year").text = str(self.max_year)
        for year in sorted(self.allocation_by_year):
            ET.SubElement(node, "landAllocation", year=str(year)).text = repr(self.allocation_by_year[year])
        return node


def read_land_use_history_table(path: str, sheet_name: Optional[str] = None) -> pd.DataFrame:
    """
    读取历史土地面积长表。

    参数
    ----
    path : str
        CSV 或 Excel 路径
    sheet_name : str, optional
        Excel 工作表名；默认第一张表

    返回
    ----
    DataFrame
        列: region(可选), leaf, year, allocation
    """
    if str(path).lower().endswith(('.xlsx', '.xls')):
        df = pd.read_excel(path, sheet_name=sheet_name or 0)
    else:
        df = pd.read_csv(path)
    df.columns = [str(c).strip() for c in df.columns]

    lower = {c.lower(): c for c in df.columns}
    leaf_col = next((lower[k] for k in ('leaf', 'land_leaf', 'landleaf', 'name') if k in lower), None)
    year_col = next((c for c in df.columns if 'year' in c.lower()), None)
    val_col = next((c for c in df.columns if 'alloc' in c.lower() or 'area' in c.lower()), None)
    if leaf_col is None or year_col is None or val_col is None:
        raise KeyError(f"历史面积表缺少 leaf/year/allocation 列: {list(df.columns)}")
    rename = {leaf_col: 'leaf', year_col: 'year', val_col: 'allocation'}
    region_col = lower.get('region')
    if region_col:
        rename[region_col] = 'region'
    df = df.rename(columns=rename)
    df['year'] = pd.to_numeric(df['year'], errors='coerce')
    df['allocation'] = pd.to_numeric(df['allocation'], errors='coerce')
    df = df.dropna(subset=['year', 'allocation'])
    df['year'] = df['year'].astype(int)
    keep = (['region'] if 'region' in df.columns else []) + ['leaf', 'year', 'allocation']
    return df[keep].reset_index(drop=True)


def build_histories_from_table(df: pd.DataFrame, region: Optional[str] = None) -> Dict[str, LandUseHistory]:
    """按 leaf 分组生成 LandUseHistory；给定 region 时只取该区域的记录"""
    if region is not None and 'region' in df.columns:
        df = df[df['region'] == region]
    out: Dict[str, LandUseHistory] = {}
    for leaf, grp in df.groupby('leaf'):
        out[str(leaf)] = LandUseHistory(dict(zip(grp['year'].astype(int), grp['allocation'].astype(float))))
    return out

# -*- coding: utf-8 -*-
from __future__ import annotations
# argparse disabled
import os
import sys
import traceback
import logging
from pathlib import Path
from typing import Dict, List, Optional
import pandas as pd
from S1_0_schema import LandConfigurationError
# ---------------- configuration (edit here instead of CLI) ----------------
CFG = {
    'run_mode': 'scenario',  # options: 'single' (single scenario/BASE) | 'scenario' (batch from Scenario sheet)
    'land_carbon_price': 0.0,  # single 模式下的恒定碳价（1990$/tC），0 表示无碳价
    'carbon_price_table': None,  # 可选：碳价长表路径（region, year, price），优先于情景表
    'default_profit_rate': None,  # 利润率表缺失时管理土地的默认毛利润率
    'write_debug_xml': True,  # 输出最后一期的调试 XML
    'write_input_xml': True,  # 输出读入配置的回写 XML
    'run_post_calc': True,  # 最后一期之后计算至碳核算终止年的 LUC
}
from S2_0_load_data import (
    DataPaths,
    ScenarioSetup,
    load_scenario_xml,
    load_profit_rates,
    load_carbon_price_table,
    load_land_allocation_table,
    apply_land_allocation_table,
    apply_land_use_histories,
)
from S3_5_land_use_change import LUCConfig, run_scenario
from S3_6_scenarios import load_scenarios, carbon_price_path, price_table_to_path
from S4_1_results import summarize_results, write_results, build_luc_dataset, write_debug_xml, write_input_xml
from luc_historical_module import read_land_use_history_table, build_histories_from_table
from config_paths import get_results_base
paths = DataPaths()
class _DedupFilter(logging.Filter):
    """过滤重复日志，确保同样的消息在同一个 handler 中只记录一次。"""
    def __init__(self, name: str = ""):
        super().__init__(name)
        # 每个 handler 各自去重，互不影响
        self._seen_messages = set()
    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        if msg in self._seen_messages:
            return False
        self._seen_messages.add(msg)
        return True
model_logger: Optional[logging.Logger] = None
def _configure_model_logger(log_dir: Path, scenario_id: str) -> logging.Logger:
    log_dir.mkdir(parents=True, exist_ok=True)
    logger_name = f"land_alloc_{scenario_id}"
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    # Reset root handlers so they do not accumulate between runs
    root_logger = logging.getLogger()
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)
        h.close()
    # File handler with timestamped lines
    model_log_file = log_dir / "model.log"
    file_handler = logging.FileHandler(model_log_file, mode="w", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    file_handler.setLevel(logging.INFO)
    file_handler.addFilter(_DedupFilter())
    # Console handler keeps stdout readable
    console_handler = logging.StreamHandler(stream=sys.stdout)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    console_handler.setLevel(logging.INFO)
    console_handler.addFilter(_DedupFilter())
    root_logger.setLevel(logging.INFO)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)
    # Capture warnings into logging so they land in model.log
    logging.captureWarnings(True)
    return logger
def _log_step(message: str, *, print_console: bool = True) -> None:
    msg = f"[RUN] {message}"
    if model_logger:
        model_logger.info(msg)
    elif print_console:
        print(msg)
# ---------------- helpers ----------------
def _maybe_table(path: Optional[str], loader):
    if path and os.path.exists(path):
        return loader(path)
    if path:
        _log_step(f"输入表不存在，跳过: {path}")
    return None
def _carbon_prices_by_region(scenario: ScenarioSetup, scenario_id: str, effects,
                             price_df: Optional[pd.DataFrame]) -> Dict[str, Dict[int, float]]:
    out: Dict[str, Dict[int, float]] = {}
    years = scenario.modeltime.years
    for region in scenario.regions:
        if price_df is not None:
            out[region.name] = price_table_to_path(price_df, region.name)
        elif effects:
            out[region.name] = carbon_price_path(effects, scenario_id, region.name, years)
        elif CFG['land_carbon_price']:
            out[region.name] = {y: float(CFG['land_carbon_price']) for y in years}
    return out
def run_one_pipeline(paths: DataPaths,
                     scenario_id: str = 'BASE',
                     scenario_effects=None,
                     outdir: Optional[str] = None) -> Dict[str, pd.DataFrame]:
    global model_logger
    outdir = outdir or get_results_base(scenario_id)
    model_logger = _configure_model_logger(Path(outdir), scenario_id)
    _log_step(f"情景 {scenario_id}: 读取 {paths.scenario_xml}")
    scenario = load_scenario_xml(paths.scenario_xml)
    mt = scenario.modeltime
    # 可选输入表覆盖 XML 中的读入面积与土地利用历史
    alloc_df = _maybe_table(paths.land_allocation_csv, load_land_allocation_table)
    hist_df = _maybe_table(paths.land_use_history_csv, read_land_use_history_table)
    for region in scenario.regions:
        if alloc_df is not None:
            apply_land_allocation_table(region.allocator, alloc_df, region.name, mt)
        if hist_df is not None:
            apply_land_use_histories(region.allocator, build_histories_from_table(hist_df, region.name))
    profit_df = _maybe_table(paths.profit_rates_csv, load_profit_rates)
    price_df = _maybe_table(CFG['carbon_price_table'], load_carbon_price_table)
    prices = _carbon_prices_by_region(scenario, scenario_id, scenario_effects, price_df)
    cfg = LUCConfig(scenario_id=scenario_id,
                    default_profit_rate=CFG['default_profit_rate'],
                    run_post_calc=CFG['run_post_calc'])
    contexts = run_scenario(scenario, profit_df, prices, cfg)
    _log_step(f"情景 {scenario_id}: {len(contexts)} 个区域运行完成")
    tables = summarize_results(contexts, scenario)
    write_results(tables, outdir, scenario_id)
    ds = build_luc_dataset(tables['Leaf_Long'])
    ds.to_dataframe().to_csv(os.path.join(outdir, f"land_allocation_dataset_{scenario_id}.csv"))
    if CFG['write_debug_xml']:
        write_debug_xml(scenario, mt.max_period - 1, os.path.join(outdir, f"debug_{scenario_id}.xml"))
    if CFG['write_input_xml']:
        write_input_xml(scenario, os.path.join(outdir, f"input_{scenario_id}.xml"))
    _log_step(f"结果已写出: {outdir}")
    return tables
def main():
    try:
        if CFG['run_mode'] == 'scenario':
            # Batch scenarios from Scenario sheet
            effects = load_scenarios(paths.scenario_config_xlsx, sheet='Scenario')
            ids: List[str] = sorted({e.scenario_id for e in effects}) or ['BASE']
            for sid in ids:
                run_one_pipeline(paths, scenario_id=sid, scenario_effects=effects)
        else:
            run_one_pipeline(paths, scenario_id='BASE', scenario_effects=None)
    except LandConfigurationError as exc:
        logging.getLogger(__name__).error(f"[RUN] 配置错误，终止运行: {exc}\n{traceback.format_exc()}")
        sys.exit(1)
if __name__ == '__main__':
    # 支持命令行参数覆盖配置
    if len(sys.argv) > 1:
        mode_arg = sys.argv[1].upper()
        if mode_arg in ['BASE', 'SINGLE', 'SCENARIO']:
            CFG['run_mode'] = 'single' if mode_arg in ['BASE', 'SINGLE'] else mode_arg.lower()
            print(f"[CLI] 使用命令行参数: run_mode='{CFG['run_mode']}'")
    main()

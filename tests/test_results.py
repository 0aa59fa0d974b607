import logging
import xml.etree.ElementTree as ET

import pandas as pd
import pytest

import S4_0_main
from S2_0_load_data import load_scenario_from_string, load_scenario_xml
from S3_5_land_use_change import run_scenario
from S4_1_results import (
    build_luc_dataset,
    summarize_results,
    write_debug_xml,
    write_input_xml,
    write_results,
)


@pytest.fixture
def finished_run(scenario_xml):
    scenario = load_scenario_from_string(scenario_xml)
    profits = pd.DataFrame({"region": ["R1", "R1"], "leaf": ["Corn", "Wheat"],
                            "year": [2005, 2005], "profit_rate": [10.0, 8.0]})
    contexts = run_scenario(scenario, profits, {"R1": {2020: 20.0}})
    return scenario, contexts


def test_summary_tables(finished_run):
    scenario, contexts = finished_run
    tables = summarize_results(contexts, scenario)
    long_df = tables["Leaf_Long"]
    assert len(long_df) == 3 * 3
    assert set(long_df["Leaf"]) == {"Corn", "Wheat", "Forest"}
    assert long_df.loc[long_df["Leaf"] == "Forest", "Land type"].unique().tolist() == ["unmanaged"]

    area = tables["Land_Area"]
    assert list(area.columns) == ["Region", "Node", "Leaf", "Y2005", "Y2010", "Y2020"]
    corn = area[area["Leaf"] == "Corn"].iloc[0]
    assert corn["Node"] == "crops"
    assert corn["Y2010"] == pytest.approx(60.0)

    assert "Y2020" in tables["LUC_MtCO2"].columns
    annual = tables["LUC_Annual"]
    assert annual["year"].max() == 2050
    assert set(tables["Market"]["market"]) == {"CO2_LUC"}


def test_luc_dataset_dimensions(finished_run):
    scenario, contexts = finished_run
    ds = build_luc_dataset(summarize_results(contexts, scenario)["Leaf_Long"])
    assert set(ds.dims) == {"region", "leaf", "year"}
    assert ds.sizes["year"] == 3
    assert float(ds["land_allocation"].sel(region="R1", leaf="Wheat", year=2005)) == pytest.approx(40.0)
    assert ds["luc_mtco2"].attrs["units"] == "MtCO2/yr"


def test_write_results_workbook(tmp_path, finished_run):
    scenario, contexts = finished_run
    path = write_results(summarize_results(contexts, scenario), str(tmp_path), "BASE")
    sheets = pd.read_excel(path, sheet_name=None)
    assert {"Leaf_Long", "Land_Area", "LUC_MtCO2", "LUC_Annual", "Market"} <= set(sheets)
    assert (tmp_path / "land_allocation_long_BASE.csv").exists()


def test_input_xml_round_trip(tmp_path, finished_run):
    scenario, _ = finished_run
    path = write_input_xml(scenario, str(tmp_path / "input.xml"))
    again = load_scenario_xml(path)
    assert again.modeltime.years == scenario.modeltime.years
    assert again.modeltime.final_calibration_year == 2010
    root = again.get_region("R1").allocator
    assert root.soil_time_scale == 40
    assert list(root.find_leaf("Wheat").readin_land_allocation) == [40.0, 40.0, 0.0]
    assert root.find_leaf("Forest").carbon_calc.mature_age == 30
    assert root.find_leaf("Corn").parent.choice_fn.exponent(0) == 2.0


def test_debug_xml_contents(tmp_path, finished_run):
    scenario, _ = finished_run
    path = write_debug_xml(scenario, 2, str(tmp_path / "debug.xml"))
    root = ET.parse(path).getroot()
    assert root.get("year") == "2020"
    corn = root.find(".//LandLeaf[@name='Corn']")
    for tag in ("cal-profit-rate", "landAllocation", "minAboveGroundCDensity", "social-discount-rate",
                "carbon-price-increase-rate", "avg-profit-rate-above", "is-new-tech",
                "LandUseHistory", "LandCarbonDensities"):
        assert corn.find(tag) is not None, tag


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)
    logging.captureWarnings(False)


def test_main_exits_on_configuration_error(tmp_path, monkeypatch, restore_root_logger):
    bad = tmp_path / "bad.xml"
    bad.write_text("<scenario><modeltime><year>2005</year></modeltime>"
                   "<region name='R1'/></scenario>", encoding="utf-8")
    monkeypatch.setenv("LAND_ALLOC_OUTPUT_DIR", str(tmp_path / "out"))
    monkeypatch.setattr(S4_0_main.paths, "scenario_xml", str(bad))
    monkeypatch.setitem(S4_0_main.CFG, "run_mode", "single")
    with pytest.raises(SystemExit) as exc:
        S4_0_main.main()
    assert exc.value.code == 1
    assert (tmp_path / "out" / "BASE" / "model.log").exists()


def test_model_log_dedup_is_per_handler_and_per_run(tmp_path, capsys, restore_root_logger):
    first = S4_0_main._configure_model_logger(tmp_path / "A", "A")
    first.info("[RUN] 开始运行")
    first.info("[RUN] 开始运行")
    second = S4_0_main._configure_model_logger(tmp_path / "B", "B")
    second.info("[RUN] 开始运行")
    for h in logging.getLogger().handlers:
        h.flush()

    log_a = (tmp_path / "A" / "model.log").read_text(encoding="utf-8")
    log_b = (tmp_path / "B" / "model.log").read_text(encoding="utf-8")
    assert log_a.count("[RUN] 开始运行") == 1
    assert log_b.count("[RUN] 开始运行") == 1
    assert capsys.readouterr().out.count("[RUN] 开始运行") == 2

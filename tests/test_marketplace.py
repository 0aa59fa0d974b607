import pytest

from marketplace_module import Marketplace


def test_add_to_demand_applies_delta():
    market = Marketplace(2)
    market.create_market("CO2_LUC", "R1")
    previous = market.add_to_demand("CO2_LUC", "R1", 5.0, 0.0, 0)
    assert previous == 5.0
    previous = market.add_to_demand("CO2_LUC", "R1", 3.0, previous, 0)
    assert previous == 3.0
    assert market.get_demand("CO2_LUC", "R1", 0) == pytest.approx(3.0)
    assert market.get_demand("CO2_LUC", "R1", 1) == 0.0


def test_missing_market_behaviour():
    market = Marketplace(1)
    assert market.get_price("CO2_LUC", "R1", 0, must_exist=False) is None
    assert market.add_to_demand("CO2_LUC", "R1", 4.0, 0.0, 0, must_exist=False) == 4.0
    with pytest.raises(KeyError):
        market.get_price("CO2_LUC", "R1", 0)
    with pytest.raises(KeyError):
        market.add_to_demand("CO2_LUC", "R1", 4.0, 0.0, 0)


def test_regions_can_share_a_market():
    market = Marketplace(1)
    assert market.create_market("CO2_LUC", "R1", "Global")
    assert not market.create_market("CO2_LUC", "R2", "Global")
    market.set_price("CO2_LUC", "R1", 20.0, 0)
    assert market.get_price("CO2_LUC", "R2", 0) == 20.0
    market.add_to_demand("CO2_LUC", "R1", 1.0, 0.0, 0)
    market.add_to_demand("CO2_LUC", "R2", 2.0, 0.0, 0)
    assert market.get_demand("CO2_LUC", "R1", 0) == pytest.approx(3.0)

    df = market.to_frame([2020])
    assert len(df) == 1
    assert df.iloc[0]["market_region"] == "Global"
    assert df.iloc[0]["demand"] == pytest.approx(3.0)


def test_dependency_finder():
    finder = Marketplace(1).get_dependency_finder()
    assert finder.add_dependency("land-allocator", "R1", "land-expansion", "R1")
    assert not finder.add_dependency("land-allocator", "R1", "land-expansion", "R1")
    assert finder.get_dependencies("land-allocator", "R1") == [("land-expansion", "R1")]
    assert finder.get_dependencies("land-allocator", "R2") == []

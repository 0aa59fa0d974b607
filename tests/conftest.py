import pytest

from S1_0_schema import Modeltime, RegionContext, RegionInfo
from marketplace_module import Marketplace
from land_leaf_module import LandLeaf
from luc_emission_module import LandCarbonDensities
from luc_historical_module import LandUseHistory


SCENARIO_XML = """<?xml version="1.0" encoding="UTF-8"?>
<scenario name="test">
  <modeltime final-calibration-year="2010" end-year="2050">
    <year>2005</year>
    <year>2010</year>
    <year>2020</year>
  </modeltime>
  <region name="R1">
    <social-discount-rate>0.05</social-discount-rate>
    <private-discount-rate-land>0.1</private-discount-rate-land>
    <LandAllocatorRoot name="root">
      <logit-exponent>3</logit-exponent>
      <soilTimeScale>40</soilTimeScale>
      <LandNode name="crops">
        <logit-exponent>2</logit-exponent>
        <logit-type>relative-cost</logit-type>
        <LandLeaf name="Corn">
          <landAllocation year="2005">60</landAllocation>
          <landAllocation year="2010">60</landAllocation>
          <minAboveGroundCDensity>0</minAboveGroundCDensity>
          <minBelowGroundCDensity>0</minBelowGroundCDensity>
          <LandUseHistory>
            <landAllocation year="1990">60</landAllocation>
          </LandUseHistory>
          <LandCarbonDensities>
            <above-ground-carbon-density>2</above-ground-carbon-density>
            <below-ground-carbon-density>5</below-ground-carbon-density>
            <mature-age>1</mature-age>
          </LandCarbonDensities>
        </LandLeaf>
        <LandLeaf name="Wheat">
          <landAllocation year="2005">40</landAllocation>
          <landAllocation year="2010">40</landAllocation>
          <LandUseHistory>
            <landAllocation year="1990">40</landAllocation>
          </LandUseHistory>
          <LandCarbonDensities>
            <above-ground-carbon-density>2</above-ground-carbon-density>
            <below-ground-carbon-density>5</below-ground-carbon-density>
          </LandCarbonDensities>
        </LandLeaf>
      </LandNode>
      <UnmanagedLandLeaf name="Forest">
        <landAllocation year="2005">100</landAllocation>
        <landAllocation year="2010">100</landAllocation>
        <LandUseHistory>
          <landAllocation year="1990">100</landAllocation>
        </LandUseHistory>
        <LandCarbonDensities>
          <above-ground-carbon-density>20</above-ground-carbon-density>
          <below-ground-carbon-density>10</below-ground-carbon-density>
          <mature-age>30</mature-age>
        </LandCarbonDensities>
      </UnmanagedLandLeaf>
    </LandAllocatorRoot>
  </region>
</scenario>
"""


@pytest.fixture
def scenario_xml():
    return SCENARIO_XML


@pytest.fixture
def modeltime():
    return Modeltime(years=[2005, 2010, 2020, 2030], final_calibration_year=2010, end_year=2050)


@pytest.fixture
def marketplace(modeltime):
    return Marketplace(modeltime.max_period)


@pytest.fixture
def ctx(modeltime, marketplace):
    return RegionContext("R1", modeltime, marketplace,
                         RegionInfo(social_discount_rate=0.05, private_discount_rate_land=0.1))


@pytest.fixture
def make_leaf():
    def _make(ctx, name="Corn", readin=None, *, above=0.0, below=0.0, history=None, cls=LandLeaf):
        mt = ctx.modeltime
        leaf = cls(name, mt.max_period)
        for period, value in enumerate(readin or []):
            leaf.set_readin_land_allocation(value, period)
        leaf.land_use_history = LandUseHistory(history or {1990: (readin or [0.0])[0]})
        leaf.carbon_calc = LandCarbonDensities(above, below, modeltime=mt)
        leaf.complete_init(ctx)
        return leaf
    return _make

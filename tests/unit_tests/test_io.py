"""Tests for featureXML and consensusXML readers."""

import pytest

from alphafeaturelink.io import (
    consensus_from_feature_map,
    read_consensus_xml,
    read_feature_xml,
    restore_original_retention_times,
)
from alphafeaturelink.models import FeatureMap, RawFeature

FEATURE_XML = """<?xml version="1.0" encoding="ISO-8859-1"?>
<featureMap version="1.9" id="fm_1" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">
  <featureList count="3">
    <feature id="f_13417612309574231917">
      <position dim="0">300.0</position>
      <position dim="1">200.1</position>
      <intensity>1e5</intensity>
      <quality dim="0">0</quality>
      <quality dim="1">0</quality>
      <overallquality>0.8</overallquality>
      <charge>2</charge>
      <convexhull nr="0">
        <pt x="294.0" y="200.0999" />
        <pt x="306.0" y="200.1001" />
      </convexhull>
      <convexhull nr="1">
        <pt x="297.0" y="200.6016" />
        <pt x="303.0" y="200.6018" />
      </convexhull>
      <subordinate>
        <feature id="f_999">
          <position dim="0">1.0</position>
          <position dim="1">1.0</position>
          <charge>1</charge>
        </feature>
      </subordinate>
      <userParam type="float" name="masstrace_intensity_0" value="6000"/>
      <userParam type="float" name="masstrace_intensity_1" value="3000"/>
    </feature>
    <feature id="f_42">
      <position dim="0">120.0</position>
      <position dim="1">150.0</position>
      <charge>0</charge>
      <convexhull nr="0">
        <pt x="118.0" y="150.0" />
      </convexhull>
    </feature>
    <feature id="f_7">
      <position dim="1">150.0</position>
      <charge>1</charge>
    </feature>
  </featureList>
</featureMap>
"""

CONSENSUS_XML = """<?xml version="1.0" encoding="ISO-8859-1"?>
<consensusXML version="1.7" id="cm_1">
  <mapList count="2">
    <map id="0" name="/tmp/a[FileID_11].featureXML" unique_id="1" label="" size="2"/>
    <map id="1" name="/tmp/b[FileID_12].featureXML" unique_id="2" label="" size="1"/>
  </mapList>
  <consensusElementList>
    <consensusElement id="e_1" quality="0.9" charge="1">
      <centroid rt="301.2" mz="200.1" it="1e5"/>
      <groupedElementList>
        <element map="0" id="13417612309574231917" rt="300.0" mz="200.1" it="6e4"/>
        <element map="1" id="55" rt="303.0" mz="200.1002" it="4e4"/>
      </groupedElementList>
    </consensusElement>
    <consensusElement id="e_2" quality="0.5" charge="0">
      <centroid rt="120.0" mz="150.0" it="10"/>
      <groupedElementList>
        <element map="0" id="42" rt="120.0" mz="150.0" it="10"/>
      </groupedElementList>
    </consensusElement>
  </consensusElementList>
</consensusXML>
"""


@pytest.fixture
def feature_file(tmp_path):
    path = tmp_path / "x[FileID_11].featureXML"
    path.write_text(FEATURE_XML, encoding="ISO-8859-1")
    return path


@pytest.fixture
def consensus_file(tmp_path):
    path = tmp_path / "featureXML_consensus.consensusXML"
    path.write_text(CONSENSUS_XML, encoding="ISO-8859-1")
    return path


class TestFeatureXml:
    """Test the detector feature reader."""

    def test_top_level_features_only(self, feature_file):
        feature_map = read_feature_xml(feature_file)

        # f_7 lacks its RT and is skipped; the subordinate feature is ignored
        assert [f.feature_id for f in feature_map.features] == ["13417612309574231917", "42"]
        assert feature_map.name == str(feature_file)

    def test_feature_values(self, feature_file):
        feature = read_feature_xml(feature_file).features[0]

        assert feature.rt == pytest.approx(5.0)
        assert feature.mz == pytest.approx(200.1)
        assert feature.charge == 2
        assert feature.quality == pytest.approx(0.8)
        assert [h.isotope_index for h in feature.hulls] == [0, 1]

    def test_hulls_in_minutes_with_intensities(self, feature_file):
        hulls = read_feature_xml(feature_file).features[0].hulls

        assert hulls[0].points[:, 0].tolist() == pytest.approx([4.9, 5.1])
        assert hulls[0].points[:, 1].mean() == pytest.approx(200.1)
        assert hulls[0].intensity == 6000.0
        assert hulls[1].intensity == 3000.0

    def test_missing_intensity_stays_none(self, feature_file):
        feature = read_feature_xml(feature_file, name="custom").features[1]

        assert feature.charge == 0
        assert feature.hulls[0].intensity is None


class TestConsensusXml:
    """Test the linker result reader."""

    def test_maps_and_elements(self, consensus_file):
        consensus = read_consensus_xml(consensus_file)

        assert [(m.index, m.size) for m in consensus.maps] == [(0, 2), (1, 1)]
        assert consensus.maps[1].name.endswith("[FileID_12].featureXML")
        assert [e.consensus_id for e in consensus.elements] == [1, 2]

        first = consensus.elements[0]
        assert first.charge == 1
        assert first.rt == pytest.approx(5.02)
        assert first.mz == pytest.approx(200.1)
        assert [(h.map_index, h.feature_id) for h in first.handles] == [
            (0, "13417612309574231917"), (1, "55"),
        ]
        assert first.handles[1].rt == pytest.approx(5.05)

    def test_restore_original_retention_times(self, consensus_file):
        consensus = read_consensus_xml(consensus_file)
        unaligned = {
            0: FeatureMap("a", [RawFeature("13417612309574231917", 200.1, 4.9)]),
            1: FeatureMap("b", [RawFeature("55", 200.1, 5.05)]),
        }
        updated = restore_original_retention_times(consensus, unaligned)

        assert updated == 1
        assert consensus.elements[0].handles[0].rt == pytest.approx(4.9)
        # Centroid keeps the aligned value
        assert consensus.elements[0].rt == pytest.approx(5.02)


class TestSingleFileConsensus:

    def test_one_element_per_feature(self, make_feature):
        feature_map = FeatureMap("/tmp/only.featureXML", [
            make_feature("1", 200.0, 5.0, charge=1),
            make_feature("2", 300.0, 6.0),
        ])
        consensus = consensus_from_feature_map(feature_map)

        assert len(consensus.maps) == 1
        assert consensus.maps[0].size == 2
        assert [e.consensus_id for e in consensus.elements] == [1, 2]
        assert consensus.elements[0].charge == 1
        assert consensus.elements[1].handles[0].feature_id == "2"

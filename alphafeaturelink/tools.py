"""Adapters for the external feature finding, alignment and linking tools.

Each tool is run in two steps: ``<tool> -write_ini <file>`` writes the
default parameter file, which is then edited (ITEM values, ITEMLIST entries,
distance thresholds) and passed back with ``<tool> -ini <file>``. Tool
output is streamed to DEBUG logging. A non-zero exit code raises
ToolExecutionError; nothing is retried.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from lxml import etree

from .config import ReconciliationParams
from .exceptions import ToolExecutionError
from .features.identity import FILE_ID_TOKEN, tag_file_name
from .io import read_consensus_xml, read_feature_xml
from .models import ConsensusMap, FeatureMap, SampleFile

logger = logging.getLogger(__name__)

FEATURE_FINDER = "FeatureFinderMetabo"
MAP_ALIGNER = "MapAlignerPoseClustering"
FEATURE_LINKER = "FeatureLinkerUnlabeledQT"


# =============================================================================
# Parameter file editing
# =============================================================================

def set_ini_items(ini_path: Path, parameters: Mapping[str, str]) -> int:
    """Set the value of every ITEM whose name is in parameters.

    Returns:
        Number of items changed
    """
    tree = etree.parse(str(ini_path))
    changed = 0
    for item in tree.iter("ITEM"):
        name = item.get("name")
        if name in parameters:
            item.set("value", str(parameters[name]))
            changed += 1
    tree.write(str(ini_path), xml_declaration=True, encoding="ISO-8859-1")
    return changed


def set_ini_item_list(ini_path: Path, name: str, values: Sequence[str]) -> None:
    """Append LISTITEM entries to the ITEMLIST called name."""
    tree = etree.parse(str(ini_path))
    for item_list in tree.iter("ITEMLIST"):
        if item_list.get("name") != name:
            continue
        for value in values:
            etree.SubElement(item_list, "LISTITEM", value=str(value))
    tree.write(str(ini_path), xml_declaration=True, encoding="ISO-8859-1")


def set_distance_thresholds(ini_path: Path, mz_threshold_ppm: float, rt_threshold_min: float) -> None:
    """Set m/z (ppm) and RT (converted to seconds) linking thresholds."""
    tree = etree.parse(str(ini_path))
    for item in tree.iter("ITEM"):
        parent = item.getparent()
        section = parent.get("name") if parent is not None else None
        name = item.get("name")
        if section == "distance_MZ" and name == "max_difference":
            item.set("value", f"{mz_threshold_ppm:g}")
        elif section == "distance_MZ" and name == "unit":
            item.set("value", "ppm")
        elif section == "distance_RT" and name == "max_difference":
            item.set("value", f"{rt_threshold_min * 60:g}")
    tree.write(str(ini_path), xml_declaration=True, encoding="ISO-8859-1")


# =============================================================================
# Tool execution
# =============================================================================

class OpenMSToolRunner:
    """Run command line tools from one installation directory.

    Args:
        tools_dir: Directory holding the tool executables
        work_dir: Working directory for tool runs and parameter files
        env: Extra environment variables (e.g. OPENMS_DATA_PATH)
    """

    def __init__(self, tools_dir: Path, work_dir: Path, env: Optional[Dict[str, str]] = None):
        self.tools_dir = Path(tools_dir)
        self.work_dir = Path(work_dir)
        self.env = dict(env or {})

    def executable(self, tool: str) -> Path:
        return self.tools_dir / tool

    def _execute(self, tool: str, args: List[str]) -> None:
        command = [str(self.executable(tool))] + args
        logger.debug(f"Starting process {command} in {self.work_dir}")

        environment = os.environ.copy()
        environment.update(self.env)

        try:
            process = subprocess.Popen(
                command,
                cwd=str(self.work_dir),
                env=environment,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except OSError as e:
            raise ToolExecutionError(tool, -1, str(e)) from e

        for line in process.stdout:
            line = line.rstrip()
            if line:
                logger.debug(f"[{tool}] {line}")
        exit_code = process.wait()

        if exit_code != 0:
            raise ToolExecutionError(tool, exit_code)

    def write_default_ini(self, tool: str) -> Path:
        ini_path = self.work_dir / f"{tool}Default.ini"
        self._execute(tool, ["-write_ini", str(ini_path)])
        return ini_path

    def run(
        self,
        tool: str,
        items: Optional[Mapping[str, str]] = None,
        item_lists: Optional[Mapping[str, Sequence[str]]] = None,
        thresholds: Optional[ReconciliationParams] = None,
    ) -> None:
        """Configure and run one tool.

        Args:
            tool: Executable name
            items: ITEM values to set
            item_lists: ITEMLIST entries to add (e.g. "in", "out")
            thresholds: Parameters whose linking thresholds are written
        """
        ini_path = self.write_default_ini(tool)
        if items:
            set_ini_items(ini_path, items)
        for name, values in (item_lists or {}).items():
            set_ini_item_list(ini_path, name, values)
        if thresholds is not None:
            set_distance_thresholds(ini_path, thresholds.mz_threshold_ppm, thresholds.rt_threshold_min)

        logger.info(f"Running {tool}")
        self._execute(tool, ["-ini", str(ini_path)])
        logger.info(f"✓ {tool} finished")


class OpenMSFeatureSource:
    """Feature detection and linking through external tools.

    Provides the ``detect(sample_file)`` and ``link(sample_files, maps)``
    callables used by ReconciliationPipeline. Feature files are named with
    the ``[FileID_<n>]`` token so that linked maps can be traced back to
    their sample file.
    """

    def __init__(self, runner: OpenMSToolRunner, params: ReconciliationParams):
        self.runner = runner
        self.params = params

    def feature_file(self, sample_file: SampleFile) -> Path:
        stem = FILE_ID_TOKEN.sub("", Path(sample_file.path).stem)
        return self.runner.work_dir / tag_file_name(stem, sample_file.file_id, ".featureXML")

    def detect(self, sample_file: SampleFile) -> FeatureMap:
        out_path = self.feature_file(sample_file)
        tool_params = self.params.to_tool_parameters()
        self.runner.run(FEATURE_FINDER, items={
            "in": str(sample_file.path),
            "out": str(out_path),
            "mass_error_ppm": tool_params["mass_error_ppm"],
            "noise_threshold_int": tool_params["noise_threshold_int"],
        })
        return read_feature_xml(out_path, name=str(out_path))

    def link(self, sample_files: Sequence[SampleFile], feature_maps: Sequence[FeatureMap]) -> ConsensusMap:
        inputs = [fm.name for fm in feature_maps]

        if self.params.do_map_alignment:
            aligned = [
                str(Path(name).with_name(Path(name).stem + ".aligned.featureXML"))
                for name in inputs
            ]
            self.runner.run(
                MAP_ALIGNER,
                items={"max_num_peaks_considered": "10000", "ignore_charge": "true"},
                item_lists={"in": inputs, "out": aligned},
                thresholds=self.params,
            )
            inputs = aligned

        out_path = self.runner.work_dir / "featureXML_consensus.consensusXML"
        self.runner.run(
            FEATURE_LINKER,
            items={"ignore_charge": "true", "out": str(out_path)},
            item_lists={"in": inputs},
            thresholds=self.params,
        )
        return read_consensus_xml(out_path)

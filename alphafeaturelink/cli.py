"""Command line entry point.

Reconciles pre-computed detector feature files (featureXML) and, for more
than one file, the linker result (consensusXML), and writes the result to
HDF5:

    alphafeaturelink --features a[FileID_1].featureXML b[FileID_2].featureXML \\
        --consensus linked.consensusXML --output result.h5
"""

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from .config import ReconciliationParams
from .exceptions import FeatureLinkError, IdentityMappingError
from .features.identity import parse_file_id_token
from .io import read_consensus_xml, read_feature_xml
from .models import Polarity, SampleFile
from .pipeline import ReconciliationPipeline
from .storage import ResultStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Reconcile per-file LC-MS features into ions and compounds'
    )
    parser.add_argument('--features', nargs='+', required=True,
                        help='featureXML file per sample')
    parser.add_argument('--file-ids', nargs='+', type=int, default=None,
                        help='File id per feature file (default: [FileID_<n>] token or position)')
    parser.add_argument('--consensus', type=str, default=None,
                        help='consensusXML linking the feature files (required for >1 file)')
    parser.add_argument('--output', type=str, required=True,
                        help='Output HDF5 file')
    parser.add_argument('--polarity', choices=['+', '-'], default='+',
                        help='Acquisition polarity')
    parser.add_argument('--mass-tolerance-ppm', type=float, default=None)
    parser.add_argument('--min-linked-samples', type=int, default=None)
    parser.add_argument('--max-charge', type=int, default=None)
    parser.add_argument('--no-alignment', action='store_true',
                        help='Features were linked without map alignment')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def _file_ids(paths: List[str], explicit: Optional[List[int]]) -> List[int]:
    if explicit is not None:
        return explicit
    ids = []
    for position, path in enumerate(paths, start=1):
        try:
            ids.append(parse_file_id_token(Path(path).name))
        except IdentityMappingError:
            ids.append(position)
    return ids


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if len(args.features) > 1 and args.consensus is None:
        parser.error('--consensus is required for more than one feature file')
    if args.file_ids is not None and len(args.file_ids) != len(args.features):
        parser.error('--file-ids must give one id per feature file')

    polarity = Polarity(args.polarity)
    overrides = {'do_map_alignment': not args.no_alignment}
    if args.mass_tolerance_ppm is not None:
        overrides['mass_tolerance_ppm'] = args.mass_tolerance_ppm
    if args.min_linked_samples is not None:
        overrides['min_linked_samples'] = args.min_linked_samples
    if args.max_charge is not None:
        overrides['max_charge'] = args.max_charge

    try:
        params = ReconciliationParams.for_polarity(polarity, **overrides)
    except ValueError as e:
        parser.error(str(e))

    file_ids = _file_ids(args.features, args.file_ids)
    sample_files = [
        SampleFile(file_id=file_id, path=path, polarity=polarity)
        for file_id, path in zip(file_ids, args.features)
    ]
    paths = {f.file_id: f.path for f in sample_files}

    pipeline = ReconciliationPipeline(
        params,
        detect=lambda sample_file: read_feature_xml(paths[sample_file.file_id]),
        link=lambda files, maps: read_consensus_xml(args.consensus),
    )

    try:
        result = pipeline.run(sample_files)
    except (FeatureLinkError, ValueError) as e:
        logger.error(f"Reconciliation failed: {e}")
        return 1

    with ResultStore(args.output, mode='w') as store:
        store.write_result(result)

    print(f"✓ {len(result.ions)} ions, {len(result.compounds)} compounds -> {args.output}")
    return 0


if __name__ == '__main__':
    raise SystemExit(main())

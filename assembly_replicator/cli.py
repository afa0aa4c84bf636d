"""
cli.py

Command line entry point: loads a model XML file, runs one replication variant,
prints the run report and optionally writes the updated model.

Exit codes: 0 succeeded, 1 failed (including unreadable input), 2 cancelled.
"""

import argparse
import logging
import sys
from typing import List, Optional, Sequence

from . import __version__
from .cad_common import ReplicatorError
from .config import CopyStrategy, ReplicationConfig
from .model_reader import read_model_file
from .model_writer import save_model_file
from .replicator import Replicator, ResultCode

logger = logging.getLogger(__name__)

EXIT_CODES = {
    ResultCode.SUCCEEDED: 0,
    ResultCode.FAILED: 1,
    ResultCode.CANCELLED: 2,
}


def _id_list(value: str) -> List[str]:
    ids = [part.strip() for part in value.split(",") if part.strip()]
    if not ids:
        raise argparse.ArgumentTypeError("expected at least one identifier")
    return ids


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="assembly-replicator",
        description="Replicate payload members across the instances of repeated assemblies.",
    )
    parser.add_argument("model", help="Model XML file")
    parser.add_argument("--payload", type=_id_list, required=True,
                        help="Comma separated identifiers of the members to replicate")
    parser.add_argument("--instances", type=_id_list,
                        help="Comma separated identifiers of the reference instances")
    parser.add_argument("--by-regions", action="store_true",
                        help="Find source instances by region containment instead of --instances")
    parser.add_argument("-o", "--output", help="Write the updated model to this XML file")
    parser.add_argument("--allow-duplicates", action="store_true",
                        help="Copy even when an equivalent member already exists at the target")
    parser.add_argument("--per-member-copy", action="store_true",
                        help="Submit one copy per payload and transform instead of one per transform")
    parser.add_argument("--grid-size", type=float, default=ReplicationConfig.grid_size,
                        help="Spatial index cell size (default: %(default)s)")
    parser.add_argument("--verbose", action="store_true", help="List the transform solved for each target")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level (default: %(default)s)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.by_regions and not args.instances:
        parser.error("either --instances or --by-regions is required")

    # --- Basic Logging Setup ---
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout
    )

    try:
        config = ReplicationConfig.from_overrides(
            grid_size=args.grid_size,
            allow_duplicates=args.allow_duplicates,
            copy_strategy=CopyStrategy.PER_MEMBER if args.per_member_copy else CopyStrategy.BATCHED,
            verbose=args.verbose,
        )
        document = read_model_file(args.model)
    except (ValueError, ReplicatorError) as e:
        logger.error(f"{e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CODES[ResultCode.FAILED]

    replicator = Replicator(document, config)
    if args.by_regions:
        result = replicator.replicate_by_regions(args.payload)
    else:
        result = replicator.replicate_along_instances(args.instances, args.payload)

    print(result.report.render())
    if result.code is not ResultCode.SUCCEEDED:
        print(result.summary())

    if args.output and result.succeeded:
        try:
            path = save_model_file(document, args.output)
        except ReplicatorError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_CODES[ResultCode.FAILED]
        print(f"Model written to {path}")

    return EXIT_CODES[result.code]


if __name__ == "__main__":
    sys.exit(main())

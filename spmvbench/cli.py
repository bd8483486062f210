"""
Command line entry point.

Usage examples
--------------
# every matrix in ./matrices, default sweep, results to performance.csv
spmvbench matrices

# hack size 64, 10 repetitions, 1/2/4/8 workers, CPU only
spmvbench matrices -H 64 -r 10 -t 1,2,4,8 --no-gpu -o results/run.csv
"""
import argparse
import logging
import sys

from .benchmark import run_directory
from .config import BenchConfig, parse_worker_counts
from .errors import SpmvBenchError
from .performance import CsvExporter

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="spmvbench",
        description="Benchmark CSR and HLL SpMV: serial, multi-threaded and GPU.",
    )
    ap.add_argument("matrix_dir", nargs="?", default=None,
                    help="directory of Matrix Market files (default: $SPMVBENCH_MATRIX_DIR or ./matrices)")
    ap.add_argument("-o", "--output", default=None, help="CSV file for the performance records")
    ap.add_argument("-H", "--hack-size", type=int, default=None, help="rows per HLL hack")
    ap.add_argument("-r", "--reps", type=int, default=None, help="timed repetitions per measurement")
    ap.add_argument("-t", "--threads", type=parse_worker_counts, default=None,
                    help="comma-separated worker counts, e.g. 1,2,4,8")
    ap.add_argument("--tolerance", type=float, default=None,
                    help="relative error above which a result is flagged")
    ap.add_argument("--no-gpu", action="store_true", help="skip GPU measurements")
    ap.add_argument("--seed", type=int, default=None, help="seed for the input vector")
    verbosity = ap.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true")
    verbosity.add_argument("-q", "--quiet", action="store_true")
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        config = BenchConfig.from_env(
            matrix_dir=args.matrix_dir,
            output_csv=args.output,
            hack_size=args.hack_size,
            repetitions=args.reps,
            worker_counts=args.threads,
            tolerance=args.tolerance,
            use_gpu=False if args.no_gpu else None,
            seed=args.seed,
        )
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    exporter = CsvExporter(config.output_csv)
    try:
        run = run_directory(config, export=exporter)
        if not exporter.started:
            exporter.export(())
    except SpmvBenchError as exc:
        logger.error("Run aborted: %s", exc, exc_info=True)
        if exporter.started:
            logger.info("%d records from completed matrices kept in %s",
                        exporter.rows, exporter.path)
        return 1
    except OSError as exc:
        logger.error("Cannot write %s: %s", config.output_csv, exc)
        return 1

    logger.info("Wrote %d performance records to %s", exporter.rows, exporter.path)
    if run.warnings:
        logger.warning("%d consistency warnings", len(run.warnings))
    for name, reason in run.failed.items():
        logger.warning("Not benchmarked: %s (%s)", name, reason)
    return 0


if __name__ == "__main__":
    sys.exit(main())

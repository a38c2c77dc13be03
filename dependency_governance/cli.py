"""
Command-line interface for the dependency governance tool.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .analyzers import get_analyzer
from .detector import Detector
from .errors import AnalysisError
from .models import AnalysisConfig, Language
from .reporting import build_report, export_worksheets, print_summary, save_report_json


logger = logging.getLogger(__name__)

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check a project's dependencies against license and cooling policy"
    )

    parser.add_argument(
        "--target",
        default=".",
        help="Project directory to analyze. Default: current directory"
    )

    parser.add_argument(
        "--policy",
        default=None,
        help="Path to a YAML policy document"
    )

    parser.add_argument(
        "--language",
        choices=[language.value for language in Language],
        default=None,
        help="Ecosystem to analyze. Default: detect from manifests"
    )

    parser.add_argument(
        "--licenses",
        action="store_true",
        help="Check licenses (with --cooling unset, only licenses are checked)"
    )

    parser.add_argument(
        "--cooling",
        action="store_true",
        help="Check cooling policy (with --licenses unset, only cooling is checked)"
    )

    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format. Default: text"
    )

    parser.add_argument(
        "--output",
        default=None,
        help="Write the JSON report to this file"
    )

    parser.add_argument(
        "--worksheets",
        default=None,
        help="Export summary, dependencies and issues to an Excel workbook"
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=8,
        help="Concurrent registry lookups. Default: 8"
    )

    parser.add_argument(
        "--progress",
        action="store_true",
        help="Show a progress bar during registry lookups"
    )

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    verbosity.add_argument("--quiet", "-q", action="store_true", help="Only log warnings and errors")

    return parser


def main(argv=None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.workers < 1:
        parser.error("--workers must be at least 1")

    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        if args.language:
            language = Language(args.language)
        else:
            detected, found = Detector().detect(args.target)
            if not found or detected is None:
                raise AnalysisError(f"no supported language manifest found in {args.target}")
            language = detected
            logger.info("Detected language: %s", language.value)

        config = AnalysisConfig(
            target=args.target,
            policy_path=args.policy,
            languages=[language],
            check_licenses=args.licenses,
            check_cooling=args.cooling,
            max_workers=args.workers,
            show_progress=args.progress,
        )
        analyzer = get_analyzer(language)
        result = analyzer.analyze(args.target, config)
    except AnalysisError as e:
        logger.error("Analysis failed: %s", e)
        return EXIT_ERROR

    report = build_report(result, args.target, language.value)

    if args.format == "json":
        json.dump(report, sys.stdout, indent=2, default=str)
        sys.stdout.write("\n")
    else:
        print_summary(report)

    if args.output:
        results_file = save_report_json(report, Path(args.output))
        logger.info("Report saved to: %s", results_file)

    if args.worksheets:
        excel_file = export_worksheets(report, Path(args.worksheets))
        logger.info("Worksheets saved to: %s", excel_file)

    return EXIT_PASSED if result.passed else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())

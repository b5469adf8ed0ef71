"""Command line interface for Lexiweave."""

from __future__ import annotations

import argparse
import logging
import pathlib
import sys
from typing import Any, Dict, Iterable, Optional, Tuple

from .configuration import LexiweaveConfig, get_settings, segmenter_config_from_settings
from .errors import (
    AbortRequested,
    LexiweaveError,
    NonInteractiveAbort,
    SegmenterConfigurationError,
    TranslationProviderConfigurationError,
)
from .failover import load_provider_configs
from .pipeline import OverlayRunner, OverlaySummary, validate_paths, write_report
from .providers import build_provider, load_glossary
from .structures import SegmenterConfig


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lexiweave",
        description=(
            "Suggest in-place vocabulary translations for .docx, .pptx, .txt "
            "and .md documents and write them to a JSON report."
        ),
    )
    parser.add_argument(
        "input_file",
        help="Path to the document to analyse.",
    )
    parser.add_argument(
        "-t",
        "--target-language",
        required=True,
        help="Language the replacements are translated into.",
    )
    parser.add_argument(
        "-s",
        "--source-language",
        help="Optional source language hint.",
    )
    parser.add_argument(
        "-r",
        "--replacement-rate",
        type=float,
        help="Target fraction of characters to replace, in (0, 1].",
    )
    parser.add_argument(
        "--max-segment-length",
        type=int,
        help="Longest paragraph sent to the model unsplit.",
    )
    parser.add_argument(
        "--min-segment-length",
        type=int,
        help="Paragraphs shorter than this are ignored.",
    )
    parser.add_argument(
        "--no-merge",
        action="store_true",
        help="Do not merge adjacent short segments.",
    )
    parser.add_argument(
        "-p",
        "--provider",
        help="Replacement provider: openai, legacy-openai, static or failover.",
    )
    parser.add_argument(
        "-m",
        "--model",
        help="Provider-specific model or deployment identifier.",
    )
    parser.add_argument(
        "-g",
        "--glossary",
        help="Glossary file (JSON object or 'word||translation' lines) for the static provider.",
    )
    parser.add_argument(
        "--failover-configs",
        help="JSON list of provider configurations tried in turn (implies -p failover).",
    )
    parser.add_argument(
        "--requests-per-second",
        type=float,
        help="Maximum model requests per second per endpoint (0 disables throttling).",
    )
    parser.add_argument(
        "-w",
        "--workers",
        type=int,
        default=4,
        help="Segments processed concurrently (default: 4).",
    )
    parser.add_argument(
        "-o",
        "--output",
        help="Report path. Defaults to <input>_replacements.json.",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Allow overwriting the report if it already exists.",
    )
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Disable prompts and enforce automatic decisions (suitable for CI).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show detailed progress information.",
    )
    parser.add_argument(
        "--debug-provider",
        action="store_true",
        help="Log complete provider requests and responses for troubleshooting.",
    )
    return parser


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_ABORTED = 2


def derive_report_path(input_path: pathlib.Path) -> pathlib.Path:
    return input_path.with_name(f"{input_path.stem}_replacements.json")


def _pick(value: Any, fallback: Any) -> Any:
    return fallback if value is None else value


def resolve_segmenter_config(
    args: argparse.Namespace, settings: LexiweaveConfig
) -> SegmenterConfig:
    """Settings first, then whatever the command line overrides."""

    config = segmenter_config_from_settings(settings)
    overrides: Dict[str, Any] = {}
    if args.max_segment_length is not None:
        overrides["max_segment_length"] = args.max_segment_length
    if args.min_segment_length is not None:
        overrides["min_segment_length"] = args.min_segment_length
    if args.no_merge:
        overrides["merge_small_segments"] = False
    return config.merged(**overrides) if overrides else config


def resolve_provider_name(args: argparse.Namespace, settings: LexiweaveConfig) -> str:
    if args.provider:
        return args.provider
    if args.failover_configs:
        return "failover"
    return settings.LEXIWEAVE_PROVIDER or "openai"


def execute_overlay(
    args: argparse.Namespace,
    settings: LexiweaveConfig,
) -> Tuple[int, Optional[OverlaySummary], Optional[str]]:
    """Run one analysis and return ``(exit_code, summary, message)``."""

    input_path = pathlib.Path(args.input_file).expanduser().resolve()
    report_path = (
        pathlib.Path(args.output).expanduser().resolve()
        if args.output
        else derive_report_path(input_path)
    )

    try:
        validate_paths(input_path, report_path, force_overwrite=args.force)
        segmenter_config = resolve_segmenter_config(args, settings)
        glossary = load_glossary(pathlib.Path(args.glossary)) if args.glossary else None
        provider_name = resolve_provider_name(args, settings)
        failover_file = _pick(args.failover_configs, settings.LEXIWEAVE_FAILOVER_CONFIGS)
        if provider_name.strip().lower() != "failover":
            failover_file = None
        provider = build_provider(
            provider_name,
            debug=bool(args.debug_provider or settings.LEXIWEAVE_PROVIDER_DEBUG),
            glossary=glossary,
            settings=settings,
            failover_configs=(
                load_provider_configs(pathlib.Path(failover_file)) if failover_file else None
            ),
            cooldown_seconds=settings.LEXIWEAVE_FAILOVER_COOLDOWN,
        )
        runner = OverlayRunner(
            provider=provider,
            provider_name=provider_name,
            target_language=args.target_language,
            source_language=args.source_language,
            replacement_rate=_pick(args.replacement_rate, settings.LEXIWEAVE_REPLACEMENT_RATE),
            segmenter_config=segmenter_config,
            model=args.model,
            requests_per_second=_pick(
                args.requests_per_second, settings.LEXIWEAVE_REQUESTS_PER_SECOND
            ),
            max_workers=args.workers,
            interactive=not args.non_interactive,
        )
        summary = runner.run(input_path)
        write_report(summary, report_path)
    except SegmenterConfigurationError as exc:
        return EXIT_FAILURE, None, f"Invalid segment bounds: {exc}"
    except (NonInteractiveAbort, AbortRequested) as exc:
        return EXIT_ABORTED, None, str(exc)
    except KeyboardInterrupt:
        return EXIT_ABORTED, None, "Processing interrupted by user."
    except (FileNotFoundError, LexiweaveError) as exc:
        return EXIT_FAILURE, None, str(exc)
    except OSError as exc:
        return EXIT_FAILURE, None, f"Could not read or write a file: {exc}"

    return EXIT_OK, summary, f"Report written to {report_path}"


def print_summary(summary: OverlaySummary) -> None:
    provider = summary.provider_name
    if summary.model:
        provider += f" ({summary.model})"
    rows = [
        ("Input file", summary.input_path),
        ("Document type", summary.document_type),
        ("Paragraphs", summary.total_paragraphs),
        (
            "Segments",
            f"{summary.processed_segments} processed / {summary.total_segments} total "
            f"({summary.skipped_segments} skipped, {summary.failed_segments} failed)",
        ),
        ("Replacements", summary.total_replacements),
        ("Provider", provider),
        ("Source language", summary.source_language),
        ("Target language", summary.target_language),
    ]
    if summary.replacement_rate is not None:
        rows.append(("Replacement rate", f"{summary.replacement_rate:.0%}"))
    rows.append(("Elapsed time", f"{summary.elapsed_seconds:.2f} seconds"))

    print("\nAnalysis complete.")
    for label, value in rows:
        if value is not None:
            print(f"  {label + ':':<18}{value}")
    for message in summary.error_messages:
        print(f"  ! {message}")


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = get_settings()
    except TranslationProviderConfigurationError as exc:
        print(exc)
        return EXIT_FAILURE

    exit_code, summary, message = execute_overlay(args, settings)
    if message:
        print(message)
    if summary is not None:
        print_summary(summary)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

"""Command-line interface for inspecting stored compositions and performances."""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .composition.manager import CompositionManager
from .composition.models import Composition, Performance, StepStatus
from .config_loader import load_config
from .interfaces import MatchEvaluationError
from .logging_config import setup_logging
from .stanza_parser import parse_stanza
from .templates import list_templates


def create_parser() -> argparse.ArgumentParser:
    """Create the command-line argument parser."""
    parser = argparse.ArgumentParser(
        description="Inspect recorded XMPP compositions and their performances",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List stored compositions
  python -m virtuoso.cli list

  # Show the steps of one composition
  python -m virtuoso.cli show comp_1718000000000_a1b2c3

  # Check a composition file before importing it
  python -m virtuoso.cli validate exported/comp_1718000000000_a1b2c3.json

  # Performance history and a detailed report
  python -m virtuoso.cli history comp_1718000000000_a1b2c3
  python -m virtuoso.cli report perf_1718000100000_d4e5f6

  # Export every composition as YAML
  python -m virtuoso.cli export --format yaml --output-dir exported
        """
    )

    parser.add_argument(
        '--config',
        type=Path,
        help='Path to configuration file (default: config/config.yml)'
    )
    parser.add_argument(
        '--data-dir',
        type=Path,
        help='Directory holding compositions and performances (overrides config)'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable logging output'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('list', help='List stored compositions')

    show_parser = subparsers.add_parser('show', help='Show the steps of a composition')
    show_parser.add_argument('composition_id')

    validate_parser = subparsers.add_parser('validate', help='Check a composition file for replay problems')
    validate_parser.add_argument('file', type=Path)

    history_parser = subparsers.add_parser('history', help='List performances of a composition')
    history_parser.add_argument('composition_id')

    report_parser = subparsers.add_parser('report', help='Show the step results of a performance')
    report_parser.add_argument('performance_id')

    export_parser = subparsers.add_parser('export', help='Export all compositions')
    export_parser.add_argument(
        '--format',
        choices=['json', 'yaml'],
        default='json',
        help='Export format (default: json)'
    )
    export_parser.add_argument(
        '--output-dir',
        type=Path,
        required=True,
        help='Directory to write exported files to'
    )

    subparsers.add_parser('templates', help='List stanza templates available for recording')

    return parser


def format_duration(duration_ms: Optional[float]) -> str:
    """Format a duration in milliseconds in a human-readable way."""
    if duration_ms is None:
        return "N/A"

    if duration_ms < 1000:
        return f"{duration_ms:.0f}ms"
    seconds = duration_ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = seconds // 60
    return f"{int(minutes)}m{seconds % 60:.0f}s"


def list_compositions(manager: CompositionManager) -> int:
    compositions = manager.list_compositions()
    if not compositions:
        print("No compositions found.")
        return 0

    print(f"Found {len(compositions)} composition(s):\n")
    print(f"{'Composition ID':<32} {'Name':<30} {'Steps':<6} {'Accounts':<20} {'Updated':<20}")
    print("-" * 110)
    for summary in compositions:
        accounts = ",".join(summary["accounts"])
        print(f"{summary['id']:<32} {summary['name'][:30]:<30} {summary['total_steps']:<6} "
              f"{accounts[:20]:<20} {summary['updated'][:19]:<20}")
    return 0


def show_composition(composition: Composition) -> int:
    print(f"{composition.name} ({composition.id}) v{composition.version}")
    if composition.description:
        print(composition.description)
    if composition.tags:
        print(f"Tags: {', '.join(composition.tags)}")

    print("\nAccounts:")
    for account in composition.accounts:
        print(f"  {account.alias:<12} {account.jid}")

    if composition.variables:
        print("\nVariables:")
        for name, value in composition.variables.items():
            print(f"  {name} = {value}")

    print("\nSteps:")
    for index, step in enumerate(composition.steps, start=1):
        print(f"  {index:>3}. [{step.type:<10}] {step.account_alias:<12} {step.description}")
    return 0


def validate_file(file_path: Path) -> int:
    try:
        composition = Composition.load_from_file(file_path)
    except (OSError, ValidationError) as e:
        print(f"Cannot load {file_path}: {e}", file=sys.stderr)
        return 1

    problems = composition.validate_structure()
    if problems:
        print(f"{composition.name} ({composition.id}) cannot be performed:")
        for problem in problems:
            print(f"  - {problem}")
        return 1

    print(f"{composition.name} ({composition.id}) is valid: {len(composition.steps)} steps")
    return 0


def show_history(performances: List[Performance]) -> int:
    if not performances:
        print("No performances found.")
        return 0

    print(f"{'Performance ID':<32} {'Status':<8} {'Start Time':<20} {'Duration':<10} {'Steps':<10}")
    print("-" * 84)
    for performance in performances:
        status = performance.status.value if performance.status else "unknown"
        summary = performance.summary
        steps_info = f"{summary.passed}P/{summary.failed}F/{summary.total}T"
        print(f"{performance.id:<32} {status:<8} {performance.start_time.isoformat()[:19]:<20} "
              f"{format_duration(performance.duration_ms):<10} {steps_info:<10}")
    return 0


def show_report(performance: Performance, composition: Optional[Composition]) -> int:
    status = performance.status.value if performance.status else "unknown"
    print(f"Performance {performance.id} of {performance.composition_id}: {status.upper()} "
          f"in {format_duration(performance.duration_ms)}")

    for index, result in enumerate(performance.step_results, start=1):
        step = composition.get_step(result.step_id) if composition else None
        label = step.description if step else result.step_id
        print(f"  {index:>3}. {result.status.value:<8} {format_duration(result.duration_ms):<8} {label}")

        if result.error and result.status != StepStatus.SKIPPED:
            print(f"         {result.error.details or 'Error'}: {result.error.message}")
        if result.matched_message:
            try:
                fields = parse_stanza(result.matched_message)
            except MatchEvaluationError:
                print("         matched: <unparseable stanza>")
            else:
                print(f"         matched: {', '.join(str(f) for f in fields)}")

    return 0 if performance.status and performance.status.value == "passed" else 1


def show_templates() -> int:
    for template in list_templates():
        fields = ", ".join(template["fields"])
        print(f"{template['name']:<12} {template['description']:<45} fields: {fields}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        if args.data_dir:
            config.paths.data_dir = args.data_dir
        if args.verbose:
            setup_logging(config)

        if args.command == 'validate':
            return validate_file(args.file)
        if args.command == 'templates':
            return show_templates()

        manager = CompositionManager.from_config(config)

        if args.command == 'list':
            return list_compositions(manager)

        if args.command == 'show':
            composition = manager.get_composition(args.composition_id)
            if composition is None:
                print(f"Composition {args.composition_id} not found", file=sys.stderr)
                return 1
            return show_composition(composition)

        if args.command == 'history':
            return show_history(manager.performances_for(args.composition_id))

        if args.command == 'report':
            performance = manager.get_performance(args.performance_id)
            if performance is None:
                print(f"Performance {args.performance_id} not found", file=sys.stderr)
                return 1
            return show_report(performance, manager.get_composition(performance.composition_id))

        if args.command == 'export':
            exported = manager.export_compositions(args.output_dir, args.format)
            print(f"Exported {len(exported)} composition(s) to {args.output_dir}")
            return 0

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 130

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())

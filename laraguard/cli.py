"""Command line entry point."""

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import load_config
from .detector import RunContext
from .detectors import default_detectors
from .errors import ConfigError
from .report import console, render_console, write_plain_text
from .runner import DetectorRunner

logger = logging.getLogger("laraguard")


def _setup_logging(verbose: bool):
    handler = RichHandler(console=Console(stderr=True), show_path=False, markup=False, rich_tracebacks=verbose)
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="laraguard",
        description="Static security analysis for Laravel applications"
    )
    parser.add_argument("root", nargs="?", default=".",
                        help="Project root to analyse (default: current directory)")
    parser.add_argument("--env", dest="environment",
                        help="Environment name (default: from config, else production)")
    parser.add_argument("--ci", action="store_true",
                        help="CI run: skip detectors that need a live deployment")
    parser.add_argument("--config", help="Path to .laraguard.yml config file")
    parser.add_argument("--format", choices=["console", "json"], default="console",
                        help="Output format (default: console)")
    parser.add_argument("-o", "--output-file", help="Write the report to a file")
    parser.add_argument("--only", nargs="+", metavar="ID",
                        help="Run only the detectors with these ids")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    root = Path(args.root).resolve()
    if not root.is_dir():
        console.print(f"[bold red]Not a directory: {args.root}[/bold red]")
        sys.exit(2)

    try:
        config = load_config(str(root), args.config)
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(2)
    if config.source_file:
        logger.debug("Using config %s", config.source_file)

    context = RunContext(
        root=root,
        environment=args.environment or config.environment,
        ci=args.ci or config.ci_mode,
    )
    runner = DetectorRunner(default_detectors(config), config)
    report = runner.run(context, only=args.only)

    if args.format == "json":
        if args.output_file:
            with open(args.output_file, 'w', encoding='utf-8') as f:
                f.write(report.to_json())
            console.print(f"[bold green]Report saved to {args.output_file}[/bold green]")
        else:
            print(report.to_json())
    else:
        render_console(report)
        if args.output_file:
            write_plain_text(report, args.output_file)
            console.print(f"\n[bold green]Report saved to {args.output_file}[/bold green]")

    sys.exit(report.exit_code)


if __name__ == "__main__":
    main()

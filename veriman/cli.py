"""command line entry point

usage:
    veriman --config config.json
    veriman --config config.json --format sarif --output report.sarif
    veriman --config config.json --predicate "Hist(totalSupply == 1)" --tx-bound 8
    veriman --config config.json --instrument-only Token.instrumented.sol

exit codes:
    0 proven, 1 real counter-example, 2 vacuous after retries,
    3 back-end error, timeout or cancellation, 4 configuration / predicate /
    contract / instrumentation error, 128 + signum when interrupted
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from veriman import __version__
from veriman.config import VeriManConfig
from veriman.errors import BackendOutputError, BackendSpawnError, ParseError, VeriManError
from veriman.utils.output_formats import OutputFormat, get_formatter
from veriman.utils.shutdown import get_shutdown_manager
from veriman.utils.validation import validate_config
from veriman.veriman import VeriMan

EXIT_BACKEND = 3
EXIT_INVALID = 4


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="veriman",
        description="VeriMan - past-time LTL property verification for Solidity contracts",
    )
    parser.add_argument("--config", "-c", type=Path, required=True, help="json configuration file")
    parser.add_argument(
        "--format", "-f", choices=[f.value for f in OutputFormat], default=None,
        help="report format (default: output.format from the configuration)",
    )
    parser.add_argument("--output", "-o", type=Path, help="write the report to a file instead of stdout")
    parser.add_argument(
        "--predicate", "-p", action="append", default=None,
        help="ptltl predicate; repeatable, replaces instrumentation.predicates",
    )
    parser.add_argument("--tx-bound", type=int, help="override verification.verifier.txBound")
    parser.add_argument("--modular-arithmetic", action="store_true", help="enable /useModularArithmetic")
    parser.add_argument("--no-cleanup", action="store_true", help="keep the working directory")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug output")
    parser.add_argument("--validate-only", action="store_true", help="validate the configuration and exit")
    parser.add_argument("--instrument-only", type=Path, metavar="OUT", help="write the instrumented contract and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def apply_overrides(config: VeriManConfig, args: argparse.Namespace) -> VeriManConfig:
    if args.predicate:
        config.instrumentation.predicates = list(args.predicate)
    if args.tx_bound is not None:
        config.verification.verifier.tx_bound = args.tx_bound
    if args.modular_arithmetic:
        config.verification.verifier.modular_arithmetic = True
    if args.no_cleanup:
        config.output.cleanup = False
    if args.verbose:
        config.output.verbose = True
    if args.format:
        config.output.format = args.format
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    get_shutdown_manager()

    # machine-readable reports own stdout
    stream = sys.stdout if (args.format or "text") == "text" and not args.output else sys.stderr
    veriman = VeriMan(verbose=args.verbose, stream=stream)

    try:
        config = apply_overrides(veriman.parse_config(args.config), args)
        if config.output.format != "text" and stream is sys.stdout:
            veriman.logger.stream = sys.stderr

        if args.validate_only:
            validation = validate_config(config)
            print(validation, file=sys.stderr)
            return 0 if validation.valid else EXIT_INVALID

        if args.instrument_only:
            veriman.pre_process_contract(config)
            instrumented = veriman.instrument()
            instrumented.write(args.instrument_only)
            print(f"Instrumented contract saved to: {args.instrument_only}", file=sys.stderr)
            return 0

        result = veriman.analyze_contract(config)
    except (BackendSpawnError, BackendOutputError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_BACKEND
    except ParseError as e:
        print(f"Error: invalid predicate\n{e.render()}", file=sys.stderr)
        return EXIT_INVALID
    except VeriManError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INVALID

    report = get_formatter(OutputFormat(config.output.format)).format(result)
    if args.output:
        args.output.write_text(report, encoding="utf-8")
        print(f"Report saved to: {args.output}", file=sys.stderr)
    else:
        print(report)
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())

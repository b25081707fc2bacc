# src/bandfactor/cli.py

"""
Band-routed integer factorization from the command line.

usage: bandfactor -h

Commands:
    factor N [N ...]    factor one or more integers (literals or expressions)
    isprime N           primality verdict from the band that owns N
    classify N [N ...]  band classification without factoring
    bands               band table: bit ranges and strategies
    profiles            available profiles in the workspace
    init                seed the workspace with the packaged profiles
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap

from colorama import Fore, Style
from colorama import init as colorama_init

from bandfactor import __version__ as _ver
from bandfactor.bands import BIT_RANGES, STRATEGY_FOR_BAND, Band, BandClassifier
from bandfactor.config import list_profiles, load_settings
from bandfactor.context import FactorizationResult, ProcessingResult
from bandfactor.engine import Engine
from bandfactor.errors import UserInputError
from bandfactor.expreval import parse_int
from bandfactor.operations import IsPrimeOp
from bandfactor.runtime import APPLY, CFG, ensure_runtime_deps
from bandfactor.runtime import current as _rt_current
from bandfactor.workspace import ensure_workspace_seeded, seed_workspace

logger = logging.getLogger(__name__)


def _print_user_error(msg: str) -> None:
    """Uniform, one-line friendly error."""
    prefix = f"{Fore.RED}Error:{Style.RESET_ALL}"
    if not (msg.startswith("Invalid input:") or msg.startswith("Error:")):
        msg = f"{prefix} {msg}"
    print(msg, file=sys.stderr)


def _configure_logging(debug: bool) -> None:
    level_name = "DEBUG" if debug else str(CFG("BEHAVIOUR.LOG_LEVEL", "WARNING")).upper()
    level = getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )


def _format_factors(res: FactorizationResult) -> str:
    parts = []
    for f in res.factors:
        base = f"{f.prime} (unsplit)" if f.prime in res.unsplit else f"{f.prime}"
        parts.append(base if f.exponent == 1 else f"{base}^{f.exponent}")
    return " * ".join(parts) if parts else "1"


def _report_failure(n: int, res: ProcessingResult) -> None:
    print(f"{Fore.RED}{n}: failed{Style.RESET_ALL} ({res.error_type}: {res.error})")


# ---- commands ----
def _cmd_factor(engine: Engine, args) -> int:
    numbers = [parse_int(s) for s in args.numbers]
    results = engine.process_batch(numbers, timeout_ms=args.timeout_ms) if len(numbers) > 1 \
        else [engine.process(numbers[0], timeout_ms=args.timeout_ms)]
    rc = 0
    for n, res in zip(numbers, results):
        if not res.success:
            _report_failure(n, res)
            rc = 1
            continue
        fr: FactorizationResult = res.result
        print(f"{Fore.GREEN}{n}{Style.RESET_ALL} = {_format_factors(fr)}")
        if args.verbose:
            print(f"    method={fr.method} cached={fr.cached} "
                  f"latency={res.metrics.latency:.1f}ms acceleration={res.metrics.acceleration_factor}")
    return rc


def _cmd_isprime(engine: Engine, args) -> int:
    n = parse_int(args.number)
    res = engine.process(IsPrimeOp(n), timeout_ms=args.timeout_ms)
    if not res.success:
        _report_failure(n, res)
        return 1
    verdict = f"{Fore.GREEN}prime" if res.result else f"{Fore.YELLOW}composite"
    print(f"{n}: {verdict}{Style.RESET_ALL}")
    return 0


def _cmd_classify(args) -> int:
    clf = BandClassifier(max_bits=int(CFG("ENGINE.MAX_BITS", 4096)))
    for s in args.numbers:
        n = parse_int(s)
        c = clf.classify(n)
        alts = ", ".join(b.name for b in c.alternatives) or "-"
        print(f"{Fore.CYAN}{n}{Style.RESET_ALL}: {c.band.name} ({c.bit_size} bits, "
              f"{STRATEGY_FOR_BAND[c.band].value}) confidence={c.confidence:.3f} alternatives={alts}")
    return 0


def _cmd_bands(args) -> int:
    for band in Band:
        lo, hi = BIT_RANGES[band]
        print(f"{int(band)}  {band.name:<13} {lo:>5}-{hi:<5} bits  {STRATEGY_FOR_BAND[band].value}")
    return 0


def _cmd_profiles(args) -> int:
    current = _rt_current().profile_name
    for name in list_profiles():
        mark = f"{Fore.GREEN}*{Style.RESET_ALL}" if name == current else " "
        print(f"{mark} {name}")
    return 0


def _cmd_init(args) -> int:
    ws, copied = seed_workspace(overwrite=args.overwrite)
    print(f"Workspace: {ws} ({copied} profile file(s) copied)")
    return 0


# ---- argparse ----
def _build_parser() -> argparse.ArgumentParser:

    epilog = textwrap.dedent("""\
    examples:
      bandfactor factor 600851475143
      bandfactor factor "2^61-1" "(2^31-1)*(2^61-1)" -v
      bandfactor isprime 0xFFFFFFFB
      bandfactor --band 3 factor 18446744073709551617
      bandfactor --profile ./mine.toml classify "3<<900"

    Numbers may be written as plain integers, 0x/0b/0o literals or integer
    expressions using + - * // % ^ ** << >> and parentheses.
    """)

    p = argparse.ArgumentParser(
        prog="bandfactor",
        description="Bit-length band routed integer factorization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=epilog,
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {_ver}")
    p.add_argument("--profile", default=None, help="Profile name in the workspace, or a path to a .toml file")
    p.add_argument("--band", type=int, default=None, help="Force band 1-8 instead of routing by bit length")
    p.add_argument("--strategy", default=None, help="Force a processing strategy by name, e.g. sieve_based")
    p.add_argument("--seed", type=int, default=None, help="Seed for every randomized algorithm")
    p.add_argument("--timeout-ms", type=int, default=None, help="Per-request deadline in milliseconds")
    p.add_argument("--debug", action="store_true", help="DEBUG logging and full tracebacks")

    sub = p.add_subparsers(dest="command", required=True)

    f = sub.add_parser("factor", help="Factor integers")
    f.add_argument("numbers", nargs="+")
    f.add_argument("-v", "--verbose", action="store_true", help="Show method and metrics per result")

    ip = sub.add_parser("isprime", help="Primality verdict")
    ip.add_argument("number")

    c = sub.add_parser("classify", help="Show the band for each integer")
    c.add_argument("numbers", nargs="+")

    sub.add_parser("bands", help="List bands")
    sub.add_parser("profiles", help="List profiles")

    i = sub.add_parser("init", help="Seed the workspace with packaged profiles")
    i.add_argument("--overwrite", action="store_true", help="Replace existing profile files")

    return p


def main(argv=None) -> int:
    """Thin wrapper: catch friendly errors, hide tracebacks unless debug."""
    try:
        return _main_impl(argv)
    except UserInputError as e:
        _print_user_error(str(e))
        return 2
    except KeyboardInterrupt:
        print("Aborted by user.", file=sys.stderr)
        return 130
    except Exception as e:
        debug = ("--debug" in (argv if argv is not None else sys.argv))
        if debug:
            raise
        print(f"Unexpected error: {e.__class__.__name__}: {e}", file=sys.stderr)
        print("Run with --debug for a full traceback.", file=sys.stderr)
        return 1


# ---- main ----
def _main_impl(argv=None) -> int:

    colorama_init(autoreset=True)

    parser = _build_parser()
    args = parser.parse_args(argv)

    if not ensure_runtime_deps(strict=True):
        return 1

    if args.command == "init":
        return _cmd_init(args)

    ensure_workspace_seeded()
    APPLY(load_settings(args.profile))
    rt = _rt_current()
    if args.debug:
        rt.debug = True
    if args.seed is not None:
        rt.seed = args.seed
    _configure_logging(rt.debug)
    logger.debug("profile '%s' loaded", rt.profile_name)

    if args.command == "bands":
        return _cmd_bands(args)
    if args.command == "profiles":
        return _cmd_profiles(args)
    if args.command == "classify":
        return _cmd_classify(args)

    with Engine.from_runtime(band=args.band, strategy=args.strategy, seed=rt.seed) as engine:
        if args.command == "isprime":
            return _cmd_isprime(engine, args)
        return _cmd_factor(engine, args)


if __name__ == "__main__":
    sys.exit(main())

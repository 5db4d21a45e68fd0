"""Command line entry point: analyse the kernels of an IR file.

``divergence`` reports barriers that only some threads reach and
``redundancy`` reports barriers that separate no conflicting accesses.
The report goes to ``output.txt`` unless another path, or ``-`` for standard
output, is given.  With ``--trace-dir`` the annotated constant-propagation
listing for thread 1 is also written there, named after the input file.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from kernelcheck.constprop import ConstantPropagation
from kernelcheck.divergence import detect_barrier_divergence
from kernelcheck.ir import parse_module
from kernelcheck.redundancy import check_redundant_barriers, render_report

__all__ = ["main"]

DEFAULT_OUTPUT = "output.txt"


def _divergence_report(module):
    return "".join(
        detect_barrier_divergence(function).render() for function in module.functions
    )


def _redundancy_report(module):
    return "".join(
        render_report(function.name, check_redundant_barriers(function))
        for function in module.functions
    )


_ANALYSES = {
    "divergence": _divergence_report,
    "redundancy": _redundancy_report,
}


def _trace_name(identifier):
    """The listing's file name: the input name less its last three characters."""
    return identifier[:-3] + ".txt"


def _write_trace(module, directory):
    listing = "".join(
        ConstantPropagation(function, 0, 0, 1).trace() for function in module.functions
    )
    target = Path(directory)
    target.mkdir(parents=True, exist_ok=True)
    path = target / _trace_name(module.identifier)
    path.write_text(listing)
    return path


def _build_parser():
    parser = argparse.ArgumentParser(
        prog="kernelcheck",
        description="Find barrier bugs in GPU kernels written as textual LLVM IR.",
    )
    parser.add_argument(
        "command",
        choices=sorted(_ANALYSES),
        help="the analysis to run",
    )
    parser.add_argument("input", help="path of the .ll file to analyse")
    parser.add_argument(
        "-o",
        "--output",
        default=DEFAULT_OUTPUT,
        help="where to write the report; '-' for standard output",
    )
    parser.add_argument(
        "--trace-dir",
        default=None,
        help="directory for the annotated constant-propagation listing",
    )
    return parser


def main(argv=None):
    """Run the command line tool and return its exit status."""
    args = _build_parser().parse_args(argv)
    source = Path(args.input)
    try:
        text = source.read_text()
    except OSError as error:
        print(f"kernelcheck: cannot read {args.input}: {error}", file=sys.stderr)
        return 1
    try:
        module = parse_module(text, source.name)
        report = _ANALYSES[args.command](module)
        if args.trace_dir is not None:
            _write_trace(module, args.trace_dir)
    except ValueError as error:
        print(f"kernelcheck: {args.input}: {error}", file=sys.stderr)
        return 1

    if args.output == "-":
        sys.stdout.write(report)
    else:
        try:
            Path(args.output).write_text(report)
        except OSError as error:
            print(f"kernelcheck: cannot write {args.output}: {error}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
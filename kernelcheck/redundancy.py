"""Detection of barriers that separate no conflicting memory accesses.

A barrier is redundant when, for every base address used on both sides of it,
the last access before it and the first access after it cannot conflict.
Two accesses conflict unless they touch the same ``a * tid + b`` index or are
both reads.  An unknown index, or two accesses that do not vary with the
thread id, are treated as touching the same index.
"""

from __future__ import annotations

from kernelcheck.accesses import BOTTOM, READ, collect_regions
from kernelcheck.ir import Function

__all__ = ["check_redundant_barriers", "find_redundant_barriers", "render_report"]

SEPARATOR = "-" * 35


def _same_index(last, first):
    if BOTTOM in (last.a, last.b, first.a, first.b):
        return True
    if last.a == "0" and first.a == "0":
        return True
    return last.a == first.a and last.b == first.b


def _separates_conflict(before, after):
    for base in sorted(before):
        earlier = before[base]
        later = after.get(base)
        if not earlier or not later:
            continue
        last, first = earlier[-1], later[0]
        both_reads = last.kind == READ and first.kind == READ
        if not _same_index(last, first) and not both_reads:
            return True
    return False


def find_redundant_barriers(regions):
    """For each barrier between consecutive ``regions``, whether it is redundant.

    ``regions`` is a sequence of mappings from base name to accesses, as made
    by :func:`kernelcheck.accesses.collect_regions`.  The result holds one
    flag per barrier, in program order.
    """
    return [
        not _separates_conflict(before, after)
        for before, after in zip(regions, regions[1:])
    ]


def check_redundant_barriers(function: Function):
    """Whether each barrier of ``function`` is redundant, in program order."""
    return find_redundant_barriers(collect_regions(function))


def render_report(function_name, results):
    """The report section for one function, barriers numbered from 1."""
    lines = [SEPARATOR, function_name, SEPARATOR]
    for number, redundant in enumerate(results, start=1):
        verdict = "is redundant" if redundant else "is not redundant"
        lines.append(f"barrier {number} {verdict}")
        lines.append(SEPARATOR)
    return "\n".join(lines) + "\n"
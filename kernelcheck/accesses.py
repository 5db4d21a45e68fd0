"""Memory accesses of a kernel grouped into regions between barriers.

Each access through a getelementptr is described as ``a * tid + b``: ``b``
is the index seen by thread 0 and ``a`` how much it grows for thread 1.
Either is ``"BOTTOM"`` when the index is unknown.  Accesses are keyed by the
pointer the base address was loaded from.
"""

from __future__ import annotations

from dataclasses import dataclass

from kernelcheck.constprop import Lattice, propagate
from kernelcheck.ir import BasicBlock, Function

__all__ = ["Access", "collect_regions", "index_coefficients"]

BARRIER = "llvm.nvvm.barrier0"
BOTTOM = "BOTTOM"
READ = "read"
WRITE = "write"

_INDEX_BITS = 64
_INDEX_LITERALS = {"true": 1, "false": 0}


@dataclass(frozen=True)
class Access:
    """One read or write of ``base[a * tid + b]``."""

    a: str
    b: str
    kind: str


def _index_literal(text):
    if text in _INDEX_LITERALS:
        return _INDEX_LITERALS[text]
    if text.startswith("%"):
        return None
    try:
        value = int(text)
    except ValueError:
        return None
    return value % (1 << _INDEX_BITS)


def _component(states, block, index):
    state = states.get(block)
    kind = state.kind(index) if state is not None else None
    if kind is Lattice.CONSTANT:
        return str(state.value(index))
    if kind is Lattice.BOTTOM:
        return BOTTOM
    return ""


def index_coefficients(block: BasicBlock, index, states0, states1):
    """The ``(a, b)`` of an index used in ``block``.

    ``states0`` and ``states1`` are the block states computed for thread 0
    and thread 1.  An index with no known value for either thread raises
    :class:`ValueError`.
    """
    literal = _index_literal(index)
    if literal is not None:
        return "0", str(literal)
    offset = _component(states0, block, index)
    step = _component(states1, block, index)
    if BOTTOM in (step, offset):
        return BOTTOM, BOTTOM
    try:
        return str(int(step) - int(offset)), offset
    except ValueError as error:
        raise ValueError(f"index {index} has no known value in block {block.label}") from error


def collect_regions(function: Function):
    """Accesses of ``function`` split at each barrier, in program order.

    Returns one mapping from base name to its accesses for every region, so
    there is always one region more than there are barriers.
    """
    states0 = propagate(function, 0, 0, 0)
    states1 = propagate(function, 0, 0, 1)
    defined = {
        instruction.result: instruction
        for block in function.blocks
        for instruction in block.instructions
        if instruction.result
    }

    regions = []
    current = {}
    for block in function.blocks:
        for instruction in block.instructions:
            if (
                instruction.opcode == "call"
                and instruction.callee
                and BARRIER in instruction.callee
            ):
                regions.append(current)
                current = {}
                continue
            if instruction.opcode == "load" and instruction.operands:
                pointer, kind = instruction.operands[0], READ
            elif instruction.opcode == "store" and len(instruction.operands) > 1:
                pointer, kind = instruction.operands[1], WRITE
            else:
                continue
            gep = defined.get(pointer)
            if gep is None or gep.opcode != "getelementptr" or len(gep.operands) < 2:
                continue
            base = defined.get(gep.operands[0])
            base_name = base.operands[0] if base is not None and base.opcode == "load" else ""
            a, b = index_coefficients(block, gep.operands[1], states0, states1)
            current.setdefault(base_name, []).append(Access(a, b, kind))
    regions.append(current)
    return regions
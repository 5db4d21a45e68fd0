"""Detection of barriers that only some threads of a block reach.

A block holding a barrier is examined when one of its predecessors ends in a
branch whose condition depends on the thread id.  If that condition also
depends on a pointer argument the barrier is divergent outright.  Otherwise
the comparison is taken to be linear in the thread id, ``a * tid + b``.  Its
operands are evaluated for thread 0 and thread 1, and the solution of the
comparison is checked against a 64-thread range.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from kernelcheck.constprop import BlockState, Lattice, propagate
from kernelcheck.dependency import build_dependency_graph, pointer_arguments
from kernelcheck.ir import Function, Instruction

__all__ = [
    "DivergenceReport",
    "classify_range",
    "comparison_operands",
    "comparison_symbol",
    "detect_barrier_divergence",
]

BARRIER = "llvm.nvvm.barrier0"
BOTTOM = "BOTTOM"

_THREAD_LIMIT = 64

_SYMBOLS = {
    "eq": "==",
    "ne": "!=",
    "slt": "<",
    "sgt": ">",
    "sle": "<=",
    "sge": ">=",
    "ult": "< (unsigned)",
    "ugt": "> (unsigned)",
    "ule": "<= (unsigned)",
    "uge": ">= (unsigned)",
}

# Literals as the signed value of their integer type; an i1 ``true`` is -1.
_SIGNED_LITERALS = {"true": -1, "false": 0, "null": 0, "zeroinitializer": 0}


@dataclass
class DivergenceReport:
    """Per-block verdicts and the barriers found to be divergent."""

    function_name: str
    blocks: list[tuple[str, bool]] = field(default_factory=list)
    barriers: list[int] = field(default_factory=list)

    def render(self):
        """The report as written to the results file."""
        lines = ["Barrier Divergence Results"]
        for name, divergent in self.blocks:
            verdict = "has" if divergent else "does not have"
            lines.append(f"Basic Block: {name} {verdict} Barrier Divergence")
        lines.extend(
            f"__syncthread(): {number} has Barrier Divergence" for number in self.barriers
        )
        return "\n".join(lines) + "\n"


def comparison_symbol(instruction: Instruction):
    """The operator an integer comparison applies, as a short symbol."""
    if instruction.opcode != "icmp":
        return "not_icmp"
    return _SYMBOLS.get(instruction.predicate, "unknown_predicate")


def _trunc_div(numerator, denominator):
    quotient = abs(numerator) // abs(denominator)
    return -quotient if (numerator < 0) != (denominator < 0) else quotient


def classify_range(symbol, a_values, b_values):
    """Whether a comparison splits the threads of a block.

    ``b_values`` holds the two comparison operands for thread 0 and
    ``a_values`` the same operands for thread 1, each as decimal text or
    ``"BOTTOM"``.  Any unknown operand makes the barrier divergent.  Text
    that is not a number raises :class:`ValueError`.
    """
    if BOTTOM in (*a_values, *b_values):
        return True
    b1, b2 = int(b_values[0]), int(b_values[1])
    a1 = int(a_values[0]) - b1
    a2 = int(a_values[1]) - b2
    slope = a1 - a2
    offset = b2 - b1
    if slope == 0:
        return False
    crossing = _trunc_div(offset, slope)
    rising = slope > 0
    if symbol in ("==", "!="):
        return 0 <= crossing < _THREAD_LIMIT
    if symbol in (">", ">="):
        return crossing >= 0 if rising else crossing < _THREAD_LIMIT
    if symbol in ("<", "<="):
        return crossing < _THREAD_LIMIT if rising else crossing >= 0
    return True


def _signed_literal(text):
    if text in _SIGNED_LITERALS:
        return _SIGNED_LITERALS[text]
    try:
        return int(text)
    except ValueError:
        return None


def _operand_text(operand, state):
    if not operand.startswith("%"):
        literal = _signed_literal(operand)
        return BOTTOM if literal is None else str(literal)
    if state.kind(operand) is Lattice.BOTTOM:
        return BOTTOM
    value = state.value(operand)
    return BOTTOM if value is None else str(value)


def comparison_operands(function: Function, states):
    """Operands of the last integer comparison, evaluated with ``states``.

    Returns ``("", "")`` when the function compares nothing.
    """
    first = second = ""
    for block in function.blocks:
        state = states.get(block, BlockState())
        for instruction in block.instructions:
            if instruction.opcode != "icmp" or len(instruction.operands) < 2:
                continue
            left, right = instruction.operands[:2]
            first = _operand_text(left, state)
            second = _operand_text(right, state)
    return first, second


def _is_barrier(instruction):
    return instruction.opcode == "call" and instruction.callee == BARRIER


def _returns(block):
    return bool(block.instructions) and block.instructions[-1].opcode == "ret"


def detect_barrier_divergence(function: Function):
    """Find the barriers of ``function`` that not every thread reaches."""
    b_values = comparison_operands(function, propagate(function, 0, 0, 0))
    a_values = comparison_operands(function, propagate(function, 0, 0, 1))
    names = function.block_names()
    graph = build_dependency_graph(function)
    arguments = pointer_arguments(function)

    branches = {}
    for block in function.blocks:
        for instruction in block.instructions:
            if instruction.opcode == "br":
                branches[block] = instruction

    verdicts = {}
    barriers = []
    barrier_count = 0
    for block in function.blocks:
        if _returns(block):
            continue
        if not any(_is_barrier(instruction) for instruction in block.instructions):
            verdicts[block] = False
            continue
        barrier_count += 1

        tid_block = None
        on_arguments = False
        for predecessor in function.predecessors(block):
            branch = branches.get(predecessor)
            if branch is None or not graph.instruction_depends_on_tid(branch):
                continue
            tid_block = predecessor
            if graph.depends_on_arguments(branch, arguments):
                on_arguments = True
                break

        if tid_block is None:
            verdicts[block] = False
            continue
        if on_arguments:
            divergent = True
        else:
            comparison = next(
                (inst for inst in tid_block.instructions if inst.opcode == "icmp"), None
            )
            if comparison is None:
                continue
            divergent = classify_range(comparison_symbol(comparison), a_values, b_values)
        verdicts[block] = divergent
        if divergent:
            barriers.append(barrier_count)

    return DivergenceReport(
        function_name=function.name,
        blocks=[(names.get(block, ""), verdicts.get(block, False)) for block in function.blocks],
        barriers=barriers,
    )
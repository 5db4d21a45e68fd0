"""Constant propagation over a function for one chosen thread coordinate.

Each block gets a :class:`BlockState` that maps value names to a lattice
element and, for constants, an integer.  Blocks are visited in program order;
a block starts from the states its predecessors had on the previous visit and
values that disagree between predecessors fall to ``BOTTOM``.  Passes repeat
while they keep changing the states, up to a fixed limit, and one more pass
is then made whose annotations form the trace.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from kernelcheck.ir import Function, Instruction

__all__ = ["BlockState", "ConstantPropagation", "Lattice", "propagate"]

_MAX_ITERATIONS = 100

_BINARY = frozenset({
    "add", "sub", "mul", "udiv", "sdiv", "urem", "srem",
    "fadd", "fsub", "fmul", "fdiv", "frem",
    "shl", "lshr", "ashr", "and", "or", "xor",
})

_CTAID = "llvm.nvvm.read.ptx.sreg.ctaid"
_NTID = "llvm.nvvm.read.ptx.sreg.ntid"
_TID = "llvm.nvvm.read.ptx.sreg.tid"


class Lattice(Enum):
    """Elements of the constant-propagation lattice."""

    TOP = "TOP"
    CONSTANT = "CONSTANT"
    BOTTOM = "BOTTOM"


@dataclass
class BlockState:
    """What is known about each named value at the end of a block."""

    values: dict[str, int | None] = field(default_factory=dict)
    lattice: dict[str, Lattice] = field(default_factory=dict)

    def kind(self, name):
        """The lattice element of ``name``, or ``None`` when nothing is known."""
        return self.lattice.get(name)

    def value(self, name):
        """The integer held by ``name`` when it is a constant, else ``None``."""
        return self.values.get(name)

    def assign(self, name, kind, value=None):
        """Record ``name`` as ``kind``; only constants keep a value."""
        self.lattice[name] = kind
        self.values[name] = value if kind is Lattice.CONSTANT else None

    def describe(self, name):
        """Render ``name`` the way the trace shows it."""
        kind = self.kind(name)
        if kind is Lattice.BOTTOM:
            return "BOTTOM"
        if kind is Lattice.CONSTANT:
            return str(self.values.get(name))
        return "TOP"


def _integer(text):
    if text == "true":
        return 1
    if text == "false":
        return 0
    if not text or not text.lstrip("-").isdigit():
        return None
    return int(text)


def _is_constant(text):
    return not text.startswith("%")


def _sdiv(a, b):
    quotient = abs(a) // abs(b)
    return -quotient if (a < 0) != (b < 0) else quotient


def _arithmetic(opcode, a, b):
    if opcode in ("add", "fadd"):
        return a + b
    if opcode == "sub":
        return a - b
    if opcode == "mul":
        return a * b
    if opcode == "sdiv":
        return _sdiv(a, b)
    if opcode == "srem":
        return a - b * _sdiv(a, b)
    return 0


def _comparison(predicate, a, b):
    outcomes = {
        "eq": a == b,
        "ne": a != b,
        "sgt": a > b,
        "sge": a >= b,
        "slt": a < b,
        "sle": a <= b,
    }
    return int(outcomes.get(predicate, False))


def _name_at(names, position):
    return names[position] if position < len(names) else ""


class ConstantPropagation:
    """Constant propagation for ``function`` with fixed thread coordinates.

    A coordinate of ``-1`` makes the matching special register unknown
    (``BOTTOM``); ``0`` (and ``1`` for the thread id) makes it that constant.
    Any other setting leaves the register untouched.
    """

    def __init__(self, function: Function, block_id=0, block_dim=0, thread_id=0):
        self.function = function
        self.block_id = block_id
        self.block_dim = block_dim
        self.thread_id = thread_id
        self.states = {}
        self.iterations = 0
        self._trace = None

    def run(self):
        """Iterate to a fixed point and return the state of every block."""
        self.states = {}
        self.iterations = 0
        while True:
            changed = self._pass([])
            self.iterations += 1
            if not (changed and self.iterations < _MAX_ITERATIONS):
                break
        pieces = []
        self._pass(pieces)
        self._trace = "".join(pieces) + "}\n"
        return self.states

    def trace(self):
        """Annotated listing of the final pass, running the analysis if needed."""
        if self._trace is None:
            self.run()
        return self._trace

    def _pass(self, out):
        changed = False
        for block in self.function.blocks:
            state = self._entry_state(block)
            out.append((block.label if block.named else "") + "\n")
            for instruction in block.instructions:
                self._transfer(instruction, state, out)
            previous = self.states.get(block, BlockState())
            if previous.values != state.values and previous.lattice != state.lattice:
                changed = True
            self.states[block] = state
        return changed

    def _entry_state(self, block):
        state = BlockState()
        for argument in self.function.arguments:
            state.assign(f"%{argument.name or argument.index}", Lattice.BOTTOM)
        for predecessor in self.function.predecessors(block):
            incoming = self.states.get(predecessor)
            if incoming is None:
                continue
            for name, value in incoming.values.items():
                if name not in state.values:
                    state.values[name] = value
                    kind = incoming.lattice.get(name)
                    if kind is not None:
                        state.lattice[name] = kind
                elif state.values[name] != value or incoming.lattice.get(name) != state.lattice.get(name):
                    state.assign(name, Lattice.BOTTOM)
        return state

    def _transfer(self, instruction: Instruction, state, out):
        opcode = instruction.opcode
        if opcode == "alloca":
            self._alloca(instruction, state, out)
        elif opcode == "store":
            self._store(instruction, state, out)
        elif opcode == "load":
            self._load(instruction, state, out)
        elif opcode in _BINARY:
            self._binary(instruction, state, out, compare=False)
        elif opcode == "icmp":
            self._binary(instruction, state, out, compare=True)
        elif opcode == "call":
            self._call(instruction, state, out)
        elif opcode in ("br", "switch"):
            self._branch(instruction, state, out)
        elif opcode == "getelementptr":
            self._getelementptr(instruction, state, out)
        elif opcode in ("sext", "zext"):
            self._extend(instruction, state, out)

    @staticmethod
    def _key(instruction):
        return instruction.result or instruction.text

    def _alloca(self, instruction, state, out):
        out.append(instruction.text)
        result = instruction.result or ""
        label = result[1:]
        state.assign(self._key(instruction), Lattice.TOP)
        out.append(f" --> %{'' if label.isdigit() else label}=TOP\n")

    def _store(self, instruction, state, out):
        out.append(instruction.text)
        stored, pointer = instruction.operands[:2]
        names = instruction.operand_names()
        first, second = _name_at(names, 0), _name_at(names, 1)
        if _is_constant(stored):
            number = _integer(stored)
            if number is None:
                state.assign(pointer, Lattice.BOTTOM)
                out.append(f" --> %{first}=BOTTOM\n")
            else:
                state.assign(pointer, Lattice.CONSTANT, number)
                out.append(f" --> %{first}={number}\n")
        else:
            kind = state.kind(stored)
            if kind is not None:
                state.assign(pointer, kind, state.value(stored))
                shown = state.describe(pointer)
                out.append(f" --> %{first}={shown}, %{second}={shown}\n")
        out.append("\n")

    def _load(self, instruction, state, out):
        out.append(instruction.text)
        pointer = instruction.operands[0]
        key = self._key(instruction)
        names = instruction.operand_names()
        if _is_constant(pointer):
            number = _integer(pointer)
            if number is None:
                state.assign(key, Lattice.BOTTOM)
            else:
                state.assign(key, Lattice.CONSTANT, number)
            shown = state.describe(key)
            out.append(f" --> %{(instruction.result or '')[1:]}={shown}, %{_name_at(names, 0)}={shown}\n")
            return
        kind = state.kind(pointer)
        if kind is None:
            return
        state.assign(key, kind, state.value(pointer))
        shown = state.describe(key)
        out.append(f" --> %{_name_at(names, 0)}={shown}, %{_name_at(names, 1)}={shown}\n")

    def _binary(self, instruction, state, out, compare):
        out.append(instruction.text)
        first, second = instruction.operands[:2]
        for operand in (first, second):
            number = _integer(operand)
            if number is not None:
                state.assign(operand, Lattice.CONSTANT, number)
        key = self._key(instruction)
        names = instruction.operand_names()
        both_variables = not _is_constant(first) and not _is_constant(second)
        if Lattice.BOTTOM in (state.kind(first), state.kind(second)):
            state.assign(key, Lattice.BOTTOM)
            out.append(f" --> %{_name_at(names, 0)}=BOTTOM, ")
            if both_variables:
                out.append(
                    f"%{_name_at(names, 1)}={state.describe(first)}, "
                    f"%{_name_at(names, 2)}={state.describe(second)}\n"
                )
            else:
                out.append(f"%{_name_at(names, 1)}=BOTTOM\n")
        else:
            a, b = state.value(first), state.value(second)
            if a is None or b is None:
                state.assign(key, Lattice.TOP)
            elif compare:
                state.assign(key, Lattice.CONSTANT, _comparison(instruction.predicate, a, b))
            else:
                try:
                    state.assign(key, Lattice.CONSTANT, _arithmetic(instruction.opcode, a, b))
                except ZeroDivisionError:
                    state.assign(key, Lattice.BOTTOM)
            out.append(f" --> %{_name_at(names, 0)}={state.describe(key)}, ")
            if both_variables:
                out.append(
                    f"%{_name_at(names, 1)}={state.describe(first)}, "
                    f"%{_name_at(names, 2)}={state.describe(second)}\n"
                )
            elif not _is_constant(first):
                out.append(f"%{_name_at(names, 1)}={state.describe(first)}\n")
            elif not _is_constant(second):
                out.append(f"%{_name_at(names, 1)}={state.describe(second)}\n")
            else:
                out.append("\n")
        if not compare:
            out.append("\n")

    def _call(self, instruction, state, out):
        out.append(instruction.text)
        callee = instruction.callee
        if callee is None:
            return
        names = instruction.operand_names()
        arguments = instruction.operands[1:-1]
        if callee == "printf":
            for position, operand in enumerate(arguments):
                name = _name_at(names, position + 1)
                if _is_constant(operand):
                    number = _integer(operand)
                    out.append(f" --> %{name}={operand if number is None else number}")
                else:
                    lead = " --> " if position == 0 else ", "
                    out.append(f"{lead}%{name}={state.describe(operand)}")
            out.append("\n")
        elif callee == "__isoc99_scanf":
            for position, operand in enumerate(arguments):
                state.assign(operand, Lattice.BOTTOM)
                name = _name_at(names, position + 1)
                out.append(f" --> %{name}=BOTTOM " if position == 0 else f", %{name}=BOTTOM")
            out.append("\n")
        else:
            registers = (
                (_CTAID, self.block_id, (0,)),
                (_NTID, self.block_dim, (0,)),
                (_TID, self.thread_id, (0, 1)),
            )
            for prefix, setting, known in registers:
                if not callee.startswith(prefix):
                    continue
                key = self._key(instruction)
                if setting == -1:
                    state.assign(key, Lattice.BOTTOM)
                elif setting in known:
                    state.assign(key, Lattice.CONSTANT, setting)
                else:
                    break
                out.append(f" --> %{_name_at(names, 0)}={state.describe(key)}\n")
                break

    def _branch(self, instruction, state, out):
        out.append(instruction.text)
        if not instruction.operands:
            out.append("\n")
            return
        condition = instruction.operands[0]
        kind = state.kind(condition)
        if kind in (Lattice.BOTTOM, Lattice.CONSTANT):
            names = instruction.operand_names()
            out.append(f" --> %{_name_at(names, 0)}={state.describe(condition)}\n")

    def _getelementptr(self, instruction, state, out):
        out.append(instruction.text)
        base = instruction.operands[0]
        state.assign(base, Lattice.BOTTOM)
        state.assign(self._key(instruction), Lattice.BOTTOM)
        base_name = base[1:] if base.startswith("%") and not base[1:].isdigit() else ""
        out.append(f" --> %{base_name}=BOTTOM, %{(instruction.result or '')[1:]}=BOTTOM\n")

    def _extend(self, instruction, state, out):
        out.append(instruction.text)
        source = instruction.operands[0]
        kind = state.kind(source)
        if kind not in (Lattice.BOTTOM, Lattice.CONSTANT):
            return
        key = self._key(instruction)
        state.assign(key, kind, state.value(source))
        names = instruction.operand_names()
        out.append(f" --> %{_name_at(names, 0)}={state.describe(key)}\n")


def propagate(function, block_id=0, block_dim=0, thread_id=0):
    """Run constant propagation and return the state of every block."""
    return ConstantPropagation(function, block_id, block_dim, thread_id).run()
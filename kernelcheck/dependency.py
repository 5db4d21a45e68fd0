"""Which values of a kernel are derived from the thread id or from arguments.

Every instruction adds edges from the value it defines to the values it was
computed from.  Values are named as they appear after ``%`` in the IR text
(``5``, ``idx``).  A call that reads a thread-id register adds an edge to the
register's intrinsic name, which is where a thread-id search ends.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from kernelcheck.ir import Function, Instruction

__all__ = [
    "DependencyGraph",
    "THREAD_ID_REGISTERS",
    "build_dependency_graph",
    "pointer_arguments",
]

THREAD_ID_REGISTERS = frozenset({
    "llvm.nvvm.read.ptx.sreg.tid.x",
    "llvm.nvvm.read.ptx.sreg.tid.y",
    "llvm.nvvm.read.ptx.sreg.tid.z",
})

_TID_PREFIX = "llvm.nvvm.read.ptx.sreg.tid"

_BINARY = frozenset({
    "add", "sub", "mul", "udiv", "sdiv", "urem", "srem",
    "fadd", "fsub", "fmul", "fdiv", "frem",
    "shl", "lshr", "ashr", "and", "or", "xor",
})
_SINGLE_SOURCE = frozenset({"load", "sext", "sitofp"})
_COMPARISONS = frozenset({"icmp", "fcmp"})


@dataclass
class DependencyGraph:
    """Edges from each value name to the names it was computed from."""

    edges: dict[str, list[str]] = field(default_factory=dict)

    def _link(self, target, sources):
        if not target:
            return
        self.edges.setdefault(target, []).extend(sources)

    def add_instruction(self, instruction: Instruction):
        """Record the dependencies that ``instruction`` introduces."""
        names = instruction.operand_names()
        if not names:
            return
        opcode = instruction.opcode
        head, rest = names[0], names[1:]
        if opcode in _SINGLE_SOURCE:
            self._link(head, rest[:1])
        elif opcode == "store":
            if rest:
                self._link(rest[0], [head])
            else:
                self._link(head, [head])
        elif opcode in _BINARY or opcode in _COMPARISONS:
            self._link(head, rest)
        elif opcode == "getelementptr":
            self._link(head, rest[:2])
        elif opcode == "call":
            callee = instruction.callee
            if callee and callee.startswith(_TID_PREFIX):
                self._link(head, [callee])

    def _reaches(self, starts, is_goal):
        stack = [name for name in starts if name]
        visited = set()
        while stack:
            current = stack.pop()
            if not current or current in visited:
                continue
            visited.add(current)
            if is_goal(current):
                return True
            stack.extend(dep for dep in self.edges.get(current, ()) if dep)
        return False

    def depends_on_tid(self, name):
        """Whether the value ``name`` is derived from a thread-id register."""
        return self._reaches([name], THREAD_ID_REGISTERS.__contains__)

    def instruction_depends_on_tid(self, instruction: Instruction):
        """Whether the value an instruction is about depends on the thread id.

        That value is the stored-to pointer for a store and the first named
        value otherwise.  Instructions naming fewer than two values never do.
        """
        names = instruction.operand_names()
        if len(names) < 2:
            return False
        start = names[1] if instruction.opcode == "store" else names[0]
        return self._reaches([start], THREAD_ID_REGISTERS.__contains__)

    def depends_on_arguments(self, instruction: Instruction, arguments):
        """Whether any value named by ``instruction`` derives from ``arguments``."""
        wanted = set(arguments)
        return self._reaches(instruction.operand_names(), wanted.__contains__)


def build_dependency_graph(function: Function):
    """The dependency graph of every instruction in ``function``."""
    graph = DependencyGraph()
    for block in function.blocks:
        for instruction in block.instructions:
            graph.add_instruction(instruction)
    return graph


def pointer_arguments(function: Function):
    """Names of pointer arguments; an unnamed one is named by its position."""
    return [
        argument.name or str(argument.index)
        for argument in function.arguments
        if argument.is_pointer
    ]
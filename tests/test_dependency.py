import pytest

from kernelcheck.dependency import (
    DependencyGraph,
    build_dependency_graph,
    pointer_arguments,
)
from kernelcheck.ir import Instruction, parse_module

TID_X = "llvm.nvvm.read.ptx.sreg.tid.x"

GUARDED_BARRIER = """\
define dso_local void @kernel(i32* %0) #0 {
  %2 = alloca i32*, align 8
  %3 = alloca i32, align 4
  store i32* %0, i32** %2, align 8
  %4 = call i32 @llvm.nvvm.read.ptx.sreg.tid.x()
  store i32 %4, i32* %3, align 4
  %5 = load i32, i32* %3, align 4
  %6 = icmp slt i32 %5, 16
  br i1 %6, label %7, label %8

7:
  call void @llvm.nvvm.barrier0()
  br label %8

8:
  ret void
}
"""

ARGUMENT_GUARD = """\
define void @k(i32* %0, i32 %1) {
  %3 = call i32 @llvm.nvvm.read.ptx.sreg.tid.x()
  %4 = sext i32 %3 to i64
  %5 = getelementptr inbounds i32, i32* %0, i64 %4
  %6 = load i32, i32* %5, align 4
  %7 = icmp sgt i32 %6, 0
  br i1 %7, label %8, label %9

8:
  br label %9

9:
  ret void
}
"""


def _function(text):
    return parse_module(text).functions[0]


def _instr(text, opcode, callee=None):
    return Instruction(text="  " + text, opcode=opcode, callee=callee)


@pytest.fixture
def guarded():
    function = _function(GUARDED_BARRIER)
    return function, build_dependency_graph(function)


@pytest.fixture
def argument_guard():
    function = _function(ARGUMENT_GUARD)
    return function, build_dependency_graph(function)


def test_edges_of_guarded_kernel(guarded):
    _, graph = guarded
    assert graph.edges == {
        "2": ["0"],
        "4": [TID_X],
        "3": ["4"],
        "5": ["3"],
        "6": ["5"],
    }


def test_depends_on_tid_follows_chain(guarded):
    _, graph = guarded
    assert graph.depends_on_tid("6") is True
    assert graph.depends_on_tid("3") is True
    assert graph.depends_on_tid("2") is False
    assert graph.depends_on_tid("99") is False
    assert graph.depends_on_tid("") is False


def test_register_name_is_itself_thread_dependent():
    graph = DependencyGraph()
    assert graph.depends_on_tid("llvm.nvvm.read.ptx.sreg.tid.y") is True
    assert graph.depends_on_tid("llvm.nvvm.read.ptx.sreg.ctaid.x") is False


def test_conditional_branch_depends_on_tid(guarded):
    function, graph = guarded
    branch = function.blocks[0].instructions[-1]
    assert branch.opcode == "br"
    assert graph.instruction_depends_on_tid(branch) is True


def test_unconditional_branch_has_too_few_names(guarded):
    function, graph = guarded
    branch = function.blocks[1].instructions[-1]
    assert graph.instruction_depends_on_tid(branch) is False


def test_store_checks_pointer_operand(guarded):
    function, graph = guarded
    stores = [i for i in function.blocks[0].instructions if i.opcode == "store"]
    assert graph.instruction_depends_on_tid(stores[1]) is True
    assert graph.instruction_depends_on_tid(stores[0]) is False


def test_single_name_instruction_is_not_dependent(guarded):
    function, graph = guarded
    call = function.blocks[0].instructions[3]
    assert call.callee == TID_X
    assert graph.instruction_depends_on_tid(call) is False


def test_branch_without_argument_dependency(guarded):
    function, graph = guarded
    branch = function.blocks[0].instructions[-1]
    assert graph.depends_on_arguments(branch, pointer_arguments(function)) is False


def test_branch_depending_on_argument(argument_guard):
    function, graph = argument_guard
    branch = function.blocks[0].instructions[-1]
    arguments = pointer_arguments(function)
    assert arguments == ["0"]
    assert graph.instruction_depends_on_tid(branch) is True
    assert graph.depends_on_arguments(branch, arguments) is True
    assert graph.depends_on_arguments(branch, []) is False


def test_getelementptr_and_sext_edges(argument_guard):
    _, graph = argument_guard
    assert graph.edges["5"] == ["0", "4"]
    assert graph.edges["4"] == ["3"]
    assert graph.edges["3"] == [TID_X]


def test_store_of_constant_links_pointer_to_itself():
    graph = DependencyGraph()
    graph.add_instruction(_instr("store i32 0, i32* %3, align 4", "store"))
    assert graph.edges == {"3": ["3"]}
    assert graph.depends_on_tid("3") is False


def test_comparison_and_conversion_edges():
    graph = DependencyGraph()
    graph.add_instruction(_instr("%c = fcmp olt float %x, %y", "fcmp"))
    graph.add_instruction(_instr("%f = sitofp i32 %i to float", "sitofp"))
    assert graph.edges == {"c": ["x", "y"], "f": ["i"]}


def test_other_calls_add_no_edges():
    graph = DependencyGraph()
    graph.add_instruction(_instr("%r = call i32 @foo(i32 %x)", "call", callee="foo"))
    graph.add_instruction(_instr("%a = alloca i32, align 4", "alloca"))
    assert graph.edges == {}


def test_cycles_terminate():
    graph = DependencyGraph()
    graph.add_instruction(_instr("%a = add i32 %b, 1", "add"))
    graph.add_instruction(_instr("%b = add i32 %a, 1", "add"))
    assert graph.depends_on_tid("a") is False
    graph.add_instruction(_instr("%b = call i32 @llvm.nvvm.read.ptx.sreg.tid.z()", "call",
                                 callee="llvm.nvvm.read.ptx.sreg.tid.z"))
    assert graph.depends_on_tid("a") is True


def test_pointer_arguments_named_and_unnamed():
    named = _function("define void @k(float* %a, i32 %n, ptr %b) {\n  ret void\n}\n")
    assert pointer_arguments(named) == ["a", "b"]
    unnamed = _function("define void @k(i32, i32*) {\n  ret void\n}\n")
    assert pointer_arguments(unnamed) == ["1"]


def test_pointer_arguments_none_when_scalars_only():
    function = _function("define void @k(i32 %n) {\n  ret void\n}\n")
    assert pointer_arguments(function) == []
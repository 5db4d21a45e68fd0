import pytest

from kernelcheck.accesses import Access, collect_regions, index_coefficients
from kernelcheck.constprop import BlockState, Lattice
from kernelcheck.ir import BasicBlock, parse_module

SHARED_KERNEL = """define dso_local void @kernel(float* %0) #0 {
  %2 = alloca float*, align 8
  store float* %0, float** %2, align 8
  %3 = call i32 @llvm.nvvm.read.ptx.sreg.tid.x()
  %4 = sext i32 %3 to i64
  %5 = load float*, float** %2, align 8
  %6 = getelementptr inbounds float, float* %5, i64 %4
  store float 1.000000e+00, float* %6, align 4
  call void @llvm.nvvm.barrier0()
  %7 = load float*, float** %2, align 8
  %8 = getelementptr inbounds float, float* %7, i64 3
  %9 = load float, float* %8, align 4
  ret void
}
"""

DIRECT_KERNEL = """define dso_local void @kernel(float* %0) #0 {
  %2 = getelementptr inbounds float, float* %0, i64 5
  store float 2.000000e+00, float* %2, align 4
  %3 = load float, float* %2, align 4
  ret void
}
"""

CONSTANT_EXPRESSION_KERNEL = """define dso_local void @kernel() #0 {
  %1 = load float, float* getelementptr inbounds ([4 x float], [4 x float]* @buf, i64 0, i64 1), align 4
  ret void
}
"""


def _function(text):
    return parse_module(text).functions[0]


def _states(block, kind, value=None):
    state = BlockState()
    state.assign("%i", kind, value)
    return {block: state}


def test_regions_split_at_barrier():
    regions = collect_regions(_function(SHARED_KERNEL))
    assert regions == [
        {"%2": [Access("1", "0", "write")]},
        {"%2": [Access("0", "3", "read")]},
    ]


def test_one_region_per_barrier_plus_one():
    regions = collect_regions(_function(DIRECT_KERNEL))
    assert len(regions) == 1


def test_base_not_loaded_has_empty_name():
    regions = collect_regions(_function(DIRECT_KERNEL))
    assert regions[0] == {"": [Access("0", "5", "write"), Access("0", "5", "read")]}


def test_constant_expression_pointer_is_not_an_access():
    regions = collect_regions(_function(CONSTANT_EXPRESSION_KERNEL))
    assert regions == [{}]


def test_constant_index_has_zero_slope():
    block = BasicBlock("1")
    assert index_coefficients(block, "7", {}, {}) == ("0", "7")


def test_unknown_thread_value_gives_bottom():
    block = BasicBlock("1")
    states0 = _states(block, Lattice.CONSTANT, 4)
    states1 = _states(block, Lattice.BOTTOM)
    assert index_coefficients(block, "%i", states0, states1) == ("BOTTOM", "BOTTOM")


def test_same_index_for_both_threads_has_zero_slope():
    block = BasicBlock("1")
    states0 = _states(block, Lattice.CONSTANT, 4)
    states1 = _states(block, Lattice.CONSTANT, 4)
    assert index_coefficients(block, "%i", states0, states1) == ("0", "4")


def test_index_without_value_raises():
    block = BasicBlock("1")
    states = _states(block, Lattice.TOP)
    with pytest.raises(ValueError):
        index_coefficients(block, "%i", states, states)


def test_index_missing_from_states_raises():
    block = BasicBlock("1")
    with pytest.raises(ValueError):
        index_coefficients(block, "%i", {}, {})
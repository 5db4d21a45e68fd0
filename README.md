# kernelcheck

kernelcheck reads GPU kernels written as textual LLVM IR (`.ll` files) and
runs two static checks on them:

- **Barrier divergence** finds barriers (calls to `llvm.nvvm.barrier0`) in
  blocks reached through a branch whose condition depends on the thread id.
  If the condition also depends on a pointer argument of the kernel, the
  barrier is reported as divergent. Otherwise the comparison is treated as
  linear in the thread id, and its solution is checked against a block of
  64 threads.
- **Redundant barriers** splits each kernel into regions at its barriers.
  It describes every load and store through a `getelementptr` as an access to
  `base[a * tid + b]`. A barrier is reported as redundant when, for every base
  used on both sides of it, the last access before it and the first access
  after it cannot conflict.

Both checks rest on a small constant-propagation pass. It is run once with
the thread id fixed to 0 and once with it fixed to 1. The two results give
the coefficients of each index expression.

## Installation

```
pip install .
```

To run the test suite as well:

```
pip install ".[test]"
pytest
```

## Command line

```
kernelcheck divergence kernel.ll
kernelcheck redundancy kernel.ll
```

Every function defined in the input file is analysed, and the reports are
written one after another.

| Option | Meaning |
| --- | --- |
| `-o PATH`, `--output PATH` | Where the report goes. The default is `output.txt`; `-` means standard output. |
| `--trace-dir DIR` | Also write the annotated constant-propagation listing for thread 1 into `DIR`. The directory is created if needed. The file is named after the input, with its last three characters replaced by `.txt` (`kernel.ll` becomes `kernel.txt`). |

The command exits with status 1 if the input cannot be read or parsed, or if
the report cannot be written. Otherwise it exits with 0.

A divergence report lists every block and then the barriers found divergent.
Barriers are numbered from 1 in program order:

```
Barrier Divergence Results
Basic Block: bb0 does not have Barrier Divergence
Basic Block: bb1 has Barrier Divergence
__syncthread(): 1 has Barrier Divergence
```

Blocks with a numbered label are called `bb0`, `bb1`, … in program order.
Blocks that carry a label of their own are listed with an empty name.

A redundancy report has one section for each function:

```
-----------------------------------
kernel_name
-----------------------------------
barrier 1 is redundant
-----------------------------------
```

## Library use

- `kernelcheck.ir` reads IR text and turns it into a model of the program.
  - `parse_module(text, identifier)` returns a `Module` of `Function`s,
    `BasicBlock`s, `Argument`s and `Instruction`s. Declarations are skipped,
    and malformed input raises `IRParseError`, a `ValueError`.
  - `Function.predecessors(block)` lists the blocks that branch to `block`.
  - `Function.block_names()` gives the `bb0`, `bb1`, … names of unnamed blocks.
  - `operand_names(text)` lists the names that follow each `%` in `text`.
- `kernelcheck.constprop` runs the constant-propagation pass.
  - `propagate(function, block_id, block_dim, thread_id)` returns a
    `BlockState` for each block. A state maps value names to a `Lattice`
    element (`TOP`, `CONSTANT`, `BOTTOM`) and, for constants, an integer.
  - `ConstantPropagation(...).run()` does the same work.
  - `ConstantPropagation(...).trace()` gives the annotated listing of the
    final pass.
- `kernelcheck.dependency` records where values come from.
  - `build_dependency_graph(function)` returns a `DependencyGraph`.
  - `DependencyGraph.depends_on_tid`, `instruction_depends_on_tid` and
    `depends_on_arguments` answer whether a value is derived from the thread
    id or from given arguments.
  - `pointer_arguments(function)` lists the kernel's pointer parameters.
- `kernelcheck.divergence` implements the barrier-divergence check.
  - `detect_barrier_divergence(function)` returns a `DivergenceReport`.
    Its `render()` method produces the text shown above.
  - `comparison_symbol`, `comparison_operands` and `classify_range` expose the
    steps of the range test.
- `kernelcheck.accesses` collects memory accesses.
  - `collect_regions(function)` returns, for each region between barriers, a
    mapping from base name to its `Access`es (`a`, `b`, `kind`).
  - `index_coefficients(block, index, states0, states1)` computes the `(a, b)`
    of a single index.
- `kernelcheck.redundancy` implements the redundant-barrier check.
  - `check_redundant_barriers(function)` and `find_redundant_barriers(regions)`
    give one flag for each barrier.
  - `render_report(function_name, results)` formats them.

## What kernelcheck does not do

- It does not report data races. Accesses are only compared across a barrier,
  to decide whether that barrier is needed.
- It reads IR text only. It does not compile source code, run kernels, or
  load bitcode.
- Its parser covers the instructions these checks use. It is not a full IR
  validator.
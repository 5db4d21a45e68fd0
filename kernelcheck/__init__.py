"""Static checks for GPU kernels in textual LLVM IR: barrier divergence and redundant barriers."""

__version__ = "0.1.0"
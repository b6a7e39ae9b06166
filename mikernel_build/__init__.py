"""MiKernel Build - orchestration for Xiaomi SM8250 kernel builds.

This package drives an existing kernel tree's make-based build, optionally
integrates SukiSU (KernelSU) and its KPM image patch, adjusts the devicetree
for MIUI, and packages the result as an AnyKernel3 flashable zip.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]

"""Build orchestration module.

This module handles:
- Kernel configuration directives
- Running make and scripts/config
- KPM image patching
- AnyKernel3 packaging
- Sequencing variants into a full pipeline
"""

from mikernel_build.builds.service import run_pipeline, run_variant

__all__ = ["run_pipeline", "run_variant"]

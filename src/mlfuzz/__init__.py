"""
mlfuzz - Fuzzing orchestration for ML model file formats.

Feed a corpus through isolated format harnesses, triage what falls out.
"""

from mlfuzz.targets import TargetKind

__version__ = "0.1.0"
__all__ = ["TargetKind", "__version__"]

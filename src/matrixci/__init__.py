from .dsl import cmd, entry, deploy, matrix
from .expansion import expand_matrix
from .runner import StageRunner, run_matrix
from .model import JobSpec, MatrixDescription, StageResult, DeployDecision, TagContext

__all__ = [
    "cmd",
    "entry",
    "deploy",
    "matrix",
    "expand_matrix",
    "StageRunner",
    "run_matrix",
    "JobSpec",
    "MatrixDescription",
    "StageResult",
    "DeployDecision",
    "TagContext",
]

# matrixci_workflow.py
# Workflow for testing matrixci itself: `matrixci run` from the repo root.
from __future__ import annotations

from matrixci import cmd, entry, matrix

MATRIX = matrix(
    entry("linux", "stable", env={"PYTEST_ADDOPTS": "-q"}),
    entry("osx", "stable", env={"PYTEST_ADDOPTS": "-q"}),
    # check that the console script is wired up
    entry("linux", "nightly", script=["matrixci --help", "matrixci check '$CI_OS_NAME = linux'"]),
    install=[
        cmd("python -m pip install -e '.[test]'"),
        cmd("python -m pip install --upgrade pip", when="$CI_CHANNEL = nightly"),
    ],
    script="python -m pytest",
)

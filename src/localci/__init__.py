"""
localci - run CI workflow jobs locally.

Reproduces, on a developer machine, the environment and execution semantics
a hosted CI provider applies to a workflow job: an isolated container (or
host processes), provider compatible environment variables, ordered steps
with conditionals and continue-on-error, and deterministic teardown.
"""

__version__ = "0.4.0"

"""Workflow graph, stages, quality gate and audit log.

Submodules are imported directly (``sitegen.workflow.graph``); nothing is
re-exported here because the step executor depends on ``workflow.log``.
"""

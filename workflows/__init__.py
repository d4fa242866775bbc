"""Workflow definitions module."""

from workflows.sync_workflow import SyncWorkflow, SyncWorkflowInput, SyncWorkflowOutput

__all__ = ["SyncWorkflow", "SyncWorkflowInput", "SyncWorkflowOutput"]

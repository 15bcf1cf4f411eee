"""n8n workflow-automation plugin."""

from src.plugins.n8n.client import N8nClient, N8nExecution, N8nWorkflow, WebhookInfo
from src.plugins.n8n.plugin import EXECUTION_FAILED, N8nPlugin

__all__ = [
    "EXECUTION_FAILED",
    "N8nClient",
    "N8nExecution",
    "N8nPlugin",
    "N8nWorkflow",
    "WebhookInfo",
]

"""Job layer package for provisioning and lifecycle orchestration."""

from .deployment_orchestrator import PERSIST_TIMEOUT_SECONDS, DeploymentOrchestrator
from .interfaces import DeploymentOrchestratorPort, LifecycleManagerPort, ResourcePolicy
from .lifecycle_manager import LifecycleManager

__all__ = [
	"DeploymentOrchestrator",
	"DeploymentOrchestratorPort",
	"LifecycleManager",
	"LifecycleManagerPort",
	"PERSIST_TIMEOUT_SECONDS",
	"ResourcePolicy",
]

"""Push-to-deploy for nginx configuration kept in a bare git repository."""

from .config import AppConfig, load_config
from .state import DeploymentResult, DeploymentState
from .workflow import DeploymentTrigger

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "DeploymentResult",
    "DeploymentState",
    "DeploymentTrigger",
    "load_config",
]

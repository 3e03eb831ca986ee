from binfetch.common.config import InstallPaths, RuntimeConfig
from binfetch.common.state import InstallState, load_install_state, save_install_state

__all__ = [
    "InstallPaths",
    "RuntimeConfig",
    "InstallState",
    "load_install_state",
    "save_install_state",
]

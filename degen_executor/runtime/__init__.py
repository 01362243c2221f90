from .logging import setup_logger
from .loop import bootstrap_dependencies, run_executor_loop
from .settings import AppSettings, ConfigurationError

__all__ = [
    "AppSettings",
    "ConfigurationError",
    "bootstrap_dependencies",
    "run_executor_loop",
    "setup_logger",
]

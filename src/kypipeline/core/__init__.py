"""Core pipeline functionality.

Provides:
- Configuration loaded from the environment
- Error taxonomy shared by every component
- Persistence, safety (approval, risk, signatures) and photo analysis
"""

from .config import Config, load_config
from .errors import KyPipelineError

__all__ = [
    "Config",
    "load_config",
    "KyPipelineError",
]

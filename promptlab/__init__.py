"""
promptlab - Prompt experimentation and optimization engine

Records execution telemetry for prompt templates, runs A/B experiments across
template variants and synthesizes ranked optimization recommendations.
"""

__version__ = "0.1.0"

# Configuration is available at top level for convenience
from promptlab.config import config

__all__ = ["config", "__version__"]

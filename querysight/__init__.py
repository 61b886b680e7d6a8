"""
QuerySight - Query safety and schema intelligence

Validates untrusted, generated SELECT queries against a per-request
table allow-list, infers undeclared relationships, caches and measures
execution, and derives lightweight insights from result sets.
"""

__version__ = "1.0.0"
__author__ = "QuerySight Team"

from querysight.config import EngineConfig, EngineType, QuerySettings, QuerySightConfig
from querysight.core.manager import DatabaseManager

__all__ = [
    "DatabaseManager",
    "EngineConfig",
    "EngineType",
    "QuerySettings",
    "QuerySightConfig",
    "__version__",
]

"""
itemstore schema compiler.

Compiles declarative item type definitions for a key-path-addressed data
store into a frozen, versioned schema descriptor:

    declarations ──▶ fields / key paths / TTL ──▶ TypeRegistry ──▶ version 0
                                                                      │
                         migration steps (1, 2, ...) ──▶ MigrationEngine
                                                                      │
                                                                      ▼
                                                            CompiledArtifact

The compiler does no I/O while compiling and keeps no state between runs.
Routing and persisting records according to the descriptor is the job of
the storage layer that consumes it.
"""

from .compiler import CompiledArtifact, SchemaCompiler
from .config import CompilerConfig, ObservabilityConfig, setup_logging
from .loader import load_file, parse_json, parse_yaml

__version__ = "0.1.0"

__all__ = [
    "CompiledArtifact",
    "SchemaCompiler",
    "CompilerConfig",
    "ObservabilityConfig",
    "setup_logging",
    "load_file",
    "parse_json",
    "parse_yaml",
]

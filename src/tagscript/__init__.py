"""Tag script engine.

Scripts are nested bullet lists bound to a ``#tag``. The package is organized
into focused modules:

- **patterns** / **expressions**: placeholder extraction, interpolation and conditions
- **outline** / **parser** / **nodes**: bullet lists to immutable action trees
- **actions**: one async handler per action kind
- **executor**: the ``Engine`` running triggers, plus the pending-response hand-off
- **connector**: status-driven binding of a tag's script to work items
- **services**: collaborator protocols; **documents**, **tasks**, **buffer** and
  **notifications** hold the filesystem-backed implementations
- **config** / **validation** / **logging_utils** / **cli**: settings, logging and the command line

The main entry points are ``load_scripts`` and ``Engine``.
"""

from .connector import ScriptConnector
from .executor import Engine, ExecutionResult, ExecutionState, execute_trigger, has_trigger
from .parser import load_scripts, parse_config
from .version import __version__

__all__ = [
    "__version__",
    "Engine",
    "ExecutionResult",
    "ExecutionState",
    "ScriptConnector",
    "execute_trigger",
    "has_trigger",
    "load_scripts",
    "parse_config",
]

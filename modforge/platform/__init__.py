"""Platform abstraction layer."""

from .files import (
    CopyRules,
    atomic_write_text,
    copy_tree,
    delete_tree_with_retries,
    iter_files,
)
from .process import (
    ProcessError,
    find_shell,
    run,
    run_script,
)

__all__ = [
    # files
    "CopyRules",
    "atomic_write_text",
    "copy_tree",
    "delete_tree_with_retries",
    "iter_files",
    # process
    "ProcessError",
    "find_shell",
    "run",
    "run_script",
]

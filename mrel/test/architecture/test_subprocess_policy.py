"""External processes and network I/O each have exactly one owner module."""

from __future__ import annotations

import pytest

from ._gate import require_arch_checks_enabled
from ._utils import is_test_file, iter_python_files, matches_prefix, mrel_root, parse_imports

_OWNERS = {
    "subprocess": "platform/process.py",
    "urllib": "platform/http.py",
}


@pytest.mark.parametrize("module", sorted(_OWNERS))
def test_io_module_is_confined_to_its_owner(module: str) -> None:
    require_arch_checks_enabled()

    root = mrel_root()
    offenders = [
        f"{file_path.relative_to(root)}:{item.line}: imports '{item.module}'"
        for file_path in iter_python_files(root)
        if not is_test_file(file_path)
        and file_path.relative_to(root).as_posix() != _OWNERS[module]
        for item in parse_imports(file_path)
        if matches_prefix(item.module, module)
    ]

    assert not offenders, f"only {_OWNERS[module]} may use {module}:\n" + "\n".join(offenders)

"""Check that the installed package matches the source tree it runs from."""

from pathlib import Path


def _read_source_version(pyproject_path: Path) -> str:
    # tomllib is stdlib from 3.11; older interpreters get the tomli backport
    try:
        import tomllib  # type: ignore[import-not-found]
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    with open(pyproject_path, "rb") as f:
        data = tomllib.load(f)
    return data.get("project", {}).get("version", "unknown")


def check_version_consistency(
    pyproject_path: Path | None = None,
) -> tuple[bool, str]:
    """Compare the runtime ``__version__`` with ``pyproject.toml``.

    A mismatch means an editable install is stale and must be reinstalled.

    Returns:
        Tuple of (is_consistent, message).
    """
    from . import __version__ as runtime_version

    if pyproject_path is None:
        pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"

    if not pyproject_path.exists():
        return False, "Cannot find pyproject.toml for version comparison"

    try:
        source_version = _read_source_version(pyproject_path)
    except (OSError, ValueError) as e:
        return False, f"Failed to read version from pyproject.toml: {e}"

    if runtime_version != source_version:
        return False, (
            f"Version mismatch detected! "
            f"Runtime: {runtime_version}, Source: {source_version}. "
            f"Reinstall with: pip install -e ."
        )

    return True, f"Version verified: {runtime_version}"

from __future__ import annotations

from ..matrix import as_bool
from ..model import Step

TEST_OPTIONS = {"framework", "args", "install"}

# framework -> (install command or None, test command)
FRAMEWORKS = {
    "pytest": ("python -m pip install -r requirements.txt", "pytest"),
    "npm": ("npm ci", "npm test"),
    "cargo": (None, "cargo test"),
}


def test_step(
    name: str,
    framework: str,
    args: str = "",
    *,
    install: bool = True,
    cwd: str | None = None,
) -> Step:
    """Create a typed test step; compiled to shell by `test_command`."""
    return Step(
        name=name,
        kind="test",
        cwd=cwd,
        options={"framework": framework, "args": args, "install": install},
    )


def test_command(step: Step) -> str:
    """
    Turn a typed test step into one runnable shell command.
    Runner never sees kind='test' details after compilation.
    """
    data = step.options or {}
    framework = data.get("framework")
    args = str(data.get("args") or "").strip()
    install = as_bool(data.get("install", True), f"Step '{step.name}': install")

    if framework not in FRAMEWORKS:
        raise ValueError(f"Unknown framework: {framework!r}")

    install_cmd, test_cmd = FRAMEWORKS[framework]
    cmd = f"{test_cmd} {args}".strip()
    if install and install_cmd:
        return f"{install_cmd} && {cmd}"
    return cmd


# keep pytest from collecting the helpers above as tests
test_step.__test__ = False
test_command.__test__ = False

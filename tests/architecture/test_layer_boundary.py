"""
Layer boundaries.

1. procurement_kernel/** may NOT import procurement_engines,
   procurement_services or procurement_config.  The kernel never depends
   upward.

2. procurement_engines/** may NOT import procurement_services or
   procurement_config.  Engines are pure and receive everything as
   arguments.

3. Engines perform no I/O: they import neither SQLAlchemy nor the
   persistence gateway.

These tests read source code via AST -- they cannot break anything.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    tree = ast.parse(filepath.read_text(), filename=str(filepath))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module and node.level == 0:
                results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    found.append(
                        f"  {filepath.relative_to(ROOT)}:{lineno} imports '{module}'"
                    )
    return found


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestKernelNoUpwardDependencies:
    FORBIDDEN_PREFIXES = (
        "procurement_engines",
        "procurement_services",
        "procurement_config",
    )

    def test_packages_exist(self):
        assert _python_files("procurement_kernel")

    def test_kernel_does_not_import_upper_layers(self):
        violations = _violations("procurement_kernel", self.FORBIDDEN_PREFIXES)

        assert not violations, (
            "Kernel boundary violation -- procurement_kernel/** must not import "
            "engines, services or config:\n" + "\n".join(violations)
        )


class TestEnginesArePure:
    def test_engines_do_not_import_services_or_config(self):
        violations = _violations(
            "procurement_engines", ("procurement_services", "procurement_config"),
        )

        assert not violations, (
            "Engine boundary violation:\n" + "\n".join(violations)
        )

    def test_engines_do_no_io(self):
        violations = _violations(
            "procurement_engines", ("sqlalchemy", "procurement_kernel.db"),
        )

        assert not violations, (
            "Engines must not touch persistence:\n" + "\n".join(violations)
        )


class TestServicesDoNotReachIntoConfig:
    def test_services_take_config_as_an_argument(self):
        violations = _violations("procurement_services", ("procurement_config",))

        assert not violations, (
            "Services receive a ProcurementConfig; they never load one:\n"
            + "\n".join(violations)
        )

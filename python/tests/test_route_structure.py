"""Structural tests for route code.

Verifies that routes follow the service/route separation rule:
- Routes may not contain domain logic or raw DB access
- Routes may only import from allowed modules
"""

import ast
from pathlib import Path

import pytest


def get_routes_dir() -> Path:
    """Get the path to the routes directory."""
    # Navigate from tests/ to duet/api/routes/
    tests_dir = Path(__file__).parent
    return tests_dir.parent / "duet" / "api" / "routes"


def get_all_route_files() -> list[Path]:
    """Get all Python files in the routes directory."""
    routes_dir = get_routes_dir()
    if not routes_dir.exists():
        return []
    return [f for f in routes_dir.iterdir() if f.suffix == ".py" and f.name != "__init__.py"]


def _imported_modules(tree: ast.AST) -> list[str]:
    modules = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            modules.extend(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            modules.append(node.module)
    return modules


class TestForbiddenImports:
    """Tests that route files don't import forbidden modules."""

    ALLOWED_MODULES = [
        "fastapi",
        "typing",
        "uuid",
        "sqlalchemy.orm",  # Only for Session type annotation
        "duet.api.deps",
        "duet.auth.middleware",
        "duet.config",
        "duet.logging",
        "duet.responses",
        "duet.errors",
        "duet.schemas",
        "duet.services",
    ]

    @pytest.fixture
    def route_files(self) -> list[Path]:
        files = get_all_route_files()
        assert len(files) > 0, "No route files found to test"
        return files

    def test_only_allowed_modules(self, route_files: list[Path]):
        """Every import in a route file comes from the allowed list."""
        for route_file in route_files:
            tree = ast.parse(route_file.read_text())
            for module in _imported_modules(tree):
                allowed = any(
                    module == prefix or module.startswith(prefix + ".")
                    for prefix in self.ALLOWED_MODULES
                )
                assert allowed, f"{route_file.name}: import of '{module}' is not allowed"

    def test_only_session_from_sqlalchemy(self, route_files: list[Path]):
        """Only 'from sqlalchemy.orm import Session' is allowed."""
        for route_file in route_files:
            tree = ast.parse(route_file.read_text())
            for node in ast.walk(tree):
                if isinstance(node, ast.ImportFrom) and node.module == "sqlalchemy.orm":
                    names = [alias.name for alias in node.names]
                    assert names == ["Session"], (
                        f"{route_file.name}: Forbidden import from sqlalchemy.orm: {names}"
                    )

    def test_no_raw_db_operations_in_routes(self, route_files: list[Path]):
        """Route files must not call db.execute, db.scalar, etc."""
        for route_file in route_files:
            tree = ast.parse(route_file.read_text())
            for node in ast.walk(tree):
                if not isinstance(node, ast.Call) or not isinstance(node.func, ast.Attribute):
                    continue
                if node.func.attr not in ("execute", "scalar", "query", "add", "commit"):
                    continue
                if isinstance(node.func.value, ast.Name) and node.func.value.id in (
                    "db",
                    "session",
                ):
                    pytest.fail(
                        f"{route_file.name}: Forbidden call "
                        f"'{node.func.value.id}.{node.func.attr}()'. "
                        "Route files must not perform raw DB operations."
                    )

    def test_conversation_routes_use_services(self):
        source = (get_routes_dir() / "conversations.py").read_text()
        assert "duet.services" in source


class TestRouteFileStructure:
    """Tests for overall route file structure."""

    def test_all_routes_have_router(self):
        """All route files must define a 'router' object."""
        for route_file in get_all_route_files():
            tree = ast.parse(route_file.read_text())
            has_router = any(
                isinstance(node, ast.Assign)
                and any(isinstance(t, ast.Name) and t.id == "router" for t in node.targets)
                for node in ast.walk(tree)
            )
            assert has_router, f"{route_file.name} must define a 'router' object"

    def test_route_handlers_return_dict(self):
        """Route handlers return the success_response dict."""
        for route_file in get_all_route_files():
            tree = ast.parse(route_file.read_text())
            for node in ast.walk(tree):
                if not isinstance(node, ast.FunctionDef):
                    continue
                is_route_handler = any(
                    isinstance(d, ast.Call)
                    and isinstance(d.func, ast.Attribute)
                    and isinstance(d.func.value, ast.Name)
                    and d.func.value.id == "router"
                    for d in node.decorator_list
                )
                if is_route_handler:
                    assert isinstance(node.returns, ast.Name) and node.returns.id == "dict", (
                        f"{route_file.name}:{node.name} should return dict"
                    )

"""Structural tests for route code.

Routes parse requests, call services and wrap results. They may not:
- import SQLAlchemy beyond the Session annotation
- import from parley.db (get_db comes through parley.api.deps)
- run queries themselves
- reach a vendor adapter directly
"""

import ast
from pathlib import Path

import pytest

from parley.api import deps
from parley.app import create_app

ROUTES_DIR = Path(__file__).parent.parent / "parley" / "api" / "routes"


def route_files() -> list[Path]:
    return sorted(f for f in ROUTES_DIR.glob("*.py") if f.name != "__init__.py")


def imports_of(path: Path) -> list[tuple[str, list[str]]]:
    """(module, names) for every import statement in the file."""
    found = []
    for node in ast.walk(ast.parse(path.read_text())):
        if isinstance(node, ast.Import):
            found.extend((alias.name, []) for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            found.append((node.module, [alias.name for alias in node.names]))
    return found


@pytest.mark.parametrize("route_file", route_files(), ids=lambda p: p.name)
class TestRouteRules:
    def test_only_session_from_sqlalchemy(self, route_file):
        for module, names in imports_of(route_file):
            if module.startswith("sqlalchemy"):
                assert module == "sqlalchemy.orm" and names == ["Session"], (
                    f"{route_file.name}: forbidden import from {module}"
                )

    def test_no_db_package_imports(self, route_file):
        for module, _ in imports_of(route_file):
            assert not module.startswith("parley.db"), (
                f"{route_file.name}: import get_db from parley.api.deps instead of {module}"
            )

    def test_no_vendor_adapters(self, route_file):
        for module, _ in imports_of(route_file):
            assert not module.endswith("_adapter"), (
                f"{route_file.name}: routes go through the completion service, not {module}"
            )

    def test_no_raw_queries(self, route_file):
        for node in ast.walk(ast.parse(route_file.read_text())):
            if (
                isinstance(node, ast.Call)
                and isinstance(node.func, ast.Attribute)
                and node.func.attr in ("execute", "scalar", "scalars", "query")
                and isinstance(node.func.value, ast.Name)
                and node.func.value.id in ("db", "session")
            ):
                pytest.fail(f"{route_file.name}: raw {node.func.value.id}.{node.func.attr}()")

    def test_defines_router(self, route_file):
        tree = ast.parse(route_file.read_text())
        assert any(
            isinstance(node, ast.Assign)
            and any(isinstance(t, ast.Name) and t.id == "router" for t in node.targets)
            for node in ast.walk(tree)
        ), f"{route_file.name} must define a 'router' object"


class TestRouteTable:
    @pytest.fixture
    def openapi_paths(self, settings, session_factory) -> dict:
        app = create_app(settings=settings, session_factory=session_factory)
        return app.openapi()["paths"]

    def test_everything_but_health_is_versioned(self, openapi_paths):
        unversioned = {p for p in openapi_paths if not p.startswith("/v1/")}

        assert unversioned == {"/health"}

    def test_expected_endpoints(self, openapi_paths):
        endpoints = {
            (method.upper(), path)
            for path, operations in openapi_paths.items()
            for method in operations
        }

        for expected in [
            ("POST", "/v1/chat"),
            ("GET", "/v1/chats"),
            ("POST", "/v1/chats"),
            ("DELETE", "/v1/chats/{chat_id}"),
            ("GET", "/v1/chats/{chat_id}/messages"),
            ("GET", "/v1/keys"),
            ("POST", "/v1/keys"),
            ("GET", "/v1/models"),
            ("GET", "/v1/models/{provider}/{model_id}"),
            ("PUT", "/v1/models/{provider}/{model_id}/enabled"),
            ("GET", "/v1/features"),
            ("PUT", "/v1/features/{feature}"),
            ("GET", "/v1/me"),
            ("GET", "/health"),
        ]:
            assert expected in endpoints


class TestDependencies:
    def test_every_exported_dependency_is_used_by_a_route(self):
        imported = {
            name
            for route_file in route_files()
            for module, names in imports_of(route_file)
            if module == "parley.api.deps"
            for name in names
        }

        assert set(deps.__all__) <= imported

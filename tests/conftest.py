"""Shared fixtures: throwaway Cordova projects and a fake npm registry."""

from __future__ import annotations

import json
import os
import typing as t
from pathlib import Path

import httpx
import pytest
from hypothesis import settings

settings.register_profile("ci", max_examples=100, deadline=None)
settings.register_profile("debug", max_examples=10)
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "ci"))

WriteProject = t.Callable[[list[t.Any]], Path]
WritePlugin = t.Callable[..., Path]


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    root = tmp_path / "app"
    (root / "plugins").mkdir(parents=True)
    return root


@pytest.fixture
def write_project(project_root: Path) -> WriteProject:
    """Write ``package.json`` with the given ``cordovaPlugins`` entries."""

    def _write(declarations: list[t.Any]) -> Path:
        manifest = {"name": "hybrid-app", "version": "1.0.0", "cordovaPlugins": declarations}
        _ = (project_root / "package.json").write_text(json.dumps(manifest), encoding="utf-8")
        return project_root

    return _write


@pytest.fixture
def write_plugin(project_root: Path) -> WritePlugin:
    """Install a fake plugin folder under ``plugins/``.

    ``json_version``/``xml_version`` write well-formed files; ``package_json``/
    ``plugin_xml`` write raw text instead.
    """

    def _write(
        folder: str,
        *,
        json_version: str | None = None,
        xml_version: str | None = None,
        package_json: str | None = None,
        plugin_xml: str | None = None,
    ) -> Path:
        plugin_dir = project_root / "plugins" / folder
        plugin_dir.mkdir(parents=True, exist_ok=True)
        if json_version is not None:
            package_json = json.dumps({"name": folder, "version": json_version})
        if xml_version is not None:
            plugin_xml = (
                '<?xml version="1.0" encoding="UTF-8"?>\n'
                '<plugin xmlns="http://apache.org/cordova/ns/plugins/1.0"'
                f' id="{folder}" version="{xml_version}">\n'
                f"  <name>{folder}</name>\n"
                "</plugin>\n"
            )
        if package_json is not None:
            _ = (plugin_dir / "package.json").write_text(package_json, encoding="utf-8")
        if plugin_xml is not None:
            _ = (plugin_dir / "plugin.xml").write_text(plugin_xml, encoding="utf-8")
        return plugin_dir

    return _write


def fake_registry(latest: dict[str, str]) -> httpx.MockTransport:
    """Build a transport answering packument requests from *latest*."""

    def handler(request: httpx.Request) -> httpx.Response:
        name = request.url.path.removeprefix("/")
        if name not in latest:
            return httpx.Response(404, json={"error": "Not found"})
        return httpx.Response(
            200, json={"name": name, "dist-tags": {"latest": latest[name]}, "versions": {}}
        )

    return httpx.MockTransport(handler)


@pytest.fixture
def registry_factory() -> t.Callable[[dict[str, str]], httpx.MockTransport]:
    return fake_registry

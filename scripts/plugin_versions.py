#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "httpx>=0.27",
#     "node-semver>=0.9",
#     "pydantic>=2.0",
#     "rich>=13.0",
#     "typer>=0.15",
# ]
# ///
"""Cordova plugin version report for hybrid-app projects.

Reads the ``cordovaPlugins`` list from the project's ``package.json``, looks
up what is installed under ``plugins/``, asks the npm registry for the newest
published versions and prints a comparison table with warnings.

Nothing is installed or modified: the tool only reads local files and queries
the registry.

Examples
--------
Report on the project in the current directory:

    uv run scripts/plugin_versions.py

Report on another checkout, against a registry mirror:

    uv run scripts/plugin_versions.py --root ../app --registry https://npm.example.com
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import typing as t
import xml.etree.ElementTree as ET
from pathlib import Path

import httpx
import nodesemver
import pydantic
import rich.console
import rich.logging
import rich.table
import rich.text
import typer
from _private_path import PrivatePath  # pyright: ignore[reportImplicitRelativeImport]

NPM_REGISTRY_URL = "https://registry.npmjs.org"
PROJECT_MANIFEST_NAME = "package.json"
DESCRIPTOR_NAME = "plugin.xml"
MANIFEST_NAME = "package.json"
ABSENT = "-"
"""Placeholder rendered for any version that is not known."""

NOTICES = (
    "\nNote: if a plugin installed version was not detected, its id might differ"
    " from npm package name.\n"
    "In this case, you need to specify the plugin entry in package.json as\n\n"
    '  {locator: "npmname@version", id: "plugin.id.from.configxml"}\n\n'
    "for the plugin to be properly detected.",
    "\nConsider sending a PR to the plugin's maintainer to fix any issues.",
)

app = typer.Typer(help="Compare expected, installed and newest Cordova plugin versions.")
console = rich.console.Console()
err_console = rich.console.Console(stderr=True)
log = logging.getLogger(__name__)


class PluginVersionsError(Exception):
    """Base class for failures that abort a report run."""


class ProjectConfigError(PluginVersionsError):
    """Raised when the project ``package.json`` is missing or invalid."""


class PluginFileError(PluginVersionsError):
    """Raised when an installed plugin's ``plugin.xml`` or ``package.json`` is corrupt."""


class RegistryError(PluginVersionsError):
    """Raised when the registry cannot tell us the newest version of a package."""


class RegistryUnreachableError(RegistryError):
    """The registry could not be queried."""


class PackageNotFoundError(RegistryError):
    """The registry does not know the package."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class Settings(pydantic.BaseModel):
    """Where to look for the project and which registry to ask.

    Examples
    --------
    >>> settings = Settings(root=Path("/srv/app"))
    >>> settings.plugins_path
    PosixPath('/srv/app/plugins')
    >>> settings.registry_url
    'https://registry.npmjs.org'
    """

    root: Path
    plugins_dir: str = "plugins"
    registry_url: str = NPM_REGISTRY_URL
    timeout: float = 30.0

    @property
    def plugins_path(self) -> Path:
        return self.root / self.plugins_dir

    @property
    def project_manifest_path(self) -> Path:
        return self.root / PROJECT_MANIFEST_NAME


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------


class PluginLocator(pydantic.BaseModel):
    """A structured ``cordovaPlugins`` entry.

    ``id`` is the identifier from the plugin's ``plugin.xml``, which is also
    the folder name under ``plugins/``. It is only needed when it differs from
    the npm package name, or when ``locator`` is a git URL.

    Examples
    --------
    >>> PluginLocator(locator="cordova-plugin-facebook4@1.7.1", id="cordova-plugin-facebook4")
    PluginLocator(locator='cordova-plugin-facebook4@1.7.1', id='cordova-plugin-facebook4', version=None)

    Git locators must carry an id:

    >>> try:
    ...     PluginLocator(locator="https://github.com/EddyVerbruggen/cordova-plugin-googleplus#ecdb527")
    ... except pydantic.ValidationError:
    ...     print("rejected")
    rejected
    """

    locator: str | None = None
    id: str | None = None
    version: str | None = None

    @pydantic.model_validator(mode="after")
    def _require_name(self) -> PluginLocator:
        if not self.has_versioned_locator and not self.id:
            msg = "entry needs either a 'name@version' locator or an 'id'"
            raise ValueError(msg)
        return self

    @property
    def has_versioned_locator(self) -> bool:
        return self.locator is not None and "@" in self.locator


PluginDeclaration = str | PluginLocator


class ProjectManifest(pydantic.BaseModel):
    """The parts of the project ``package.json`` this tool reads.

    Examples
    --------
    >>> manifest = ProjectManifest.model_validate(
    ...     {"name": "app", "cordovaPlugins": ["cordova-plugin-calendar@4.5.1", {"id": "x"}]}
    ... )
    >>> manifest.cordova_plugins
    ['cordova-plugin-calendar@4.5.1', PluginLocator(locator=None, id='x', version=None)]
    """

    model_config = pydantic.ConfigDict(populate_by_name=True)

    cordova_plugins: list[PluginDeclaration] = pydantic.Field(
        default_factory=list, alias="cordovaPlugins"
    )


class NormalizedDeclaration(pydantic.BaseModel):
    """A declaration reduced to the three facts the report needs."""

    model_config = pydantic.ConfigDict(frozen=True)

    name: str
    expected_version: str | None
    folder: str


def _split_name_version(text: str) -> tuple[str, str | None]:
    name, _, version = text.partition("@")
    return name, version or None


def resolve_declaration(declaration: PluginDeclaration) -> NormalizedDeclaration:
    """Normalize a ``cordovaPlugins`` entry.

    Parameters
    ----------
    declaration : str or PluginLocator
        A ``"name[@version]"`` string or a structured entry.

    Returns
    -------
    NormalizedDeclaration
        Display name, expected version (``None`` when not pinned) and the
        folder name under ``plugins/``.

    Examples
    --------
    >>> resolve_declaration("cordova-plugin-calendar@4.5.1")
    NormalizedDeclaration(name='cordova-plugin-calendar', expected_version='4.5.1', folder='cordova-plugin-calendar')
    >>> resolve_declaration("cordova-plugin-device")
    NormalizedDeclaration(name='cordova-plugin-device', expected_version=None, folder='cordova-plugin-device')

    The locator wins over ``id``/``version`` for the name, ``id`` still picks the folder:

    >>> resolve_declaration(PluginLocator(locator="branch-cordova-sdk@2.5.0", id="io.branch.sdk", version="9"))
    NormalizedDeclaration(name='branch-cordova-sdk', expected_version='2.5.0', folder='io.branch.sdk')

    Git locators fall back to ``id``:

    >>> resolve_declaration(PluginLocator(locator="https://github.com/x/y#abc", id="cordova-plugin-y"))
    NormalizedDeclaration(name='cordova-plugin-y', expected_version=None, folder='cordova-plugin-y')
    """
    if isinstance(declaration, str):
        name, expected = _split_name_version(declaration)
        return NormalizedDeclaration(name=name, expected_version=expected, folder=name)

    if declaration.has_versioned_locator:
        name, expected = _split_name_version(t.cast("str", declaration.locator))
    else:
        # A git locator pins a commit we cannot verify against the folder contents,
        # so only the explicit version (if any) is expected.
        name, expected = _split_name_version(f"{declaration.id}@{declaration.version or ''}")
    return NormalizedDeclaration(
        name=name, expected_version=expected, folder=declaration.id or name
    )


def load_project_manifest(settings: Settings) -> ProjectManifest:
    """Load and validate the project ``package.json``.

    Raises
    ------
    ProjectConfigError
        If the file is missing or unreadable, is not JSON, or has a malformed ``cordovaPlugins``.
    """
    path = settings.project_manifest_path
    if not path.exists():
        msg = f"{PrivatePath(path)} not found"
        raise ProjectConfigError(msg)
    try:
        raw = t.cast("object", json.loads(path.read_text(encoding="utf-8")))
        return ProjectManifest.model_validate(raw)
    except (json.JSONDecodeError, pydantic.ValidationError, UnicodeDecodeError, OSError) as exc:
        msg = f"Invalid {PrivatePath(path)}: {exc}"
        raise ProjectConfigError(msg) from exc


# ---------------------------------------------------------------------------
# Local inventory
# ---------------------------------------------------------------------------


class PluginRecord(pydantic.BaseModel):
    """Everything known about one declared plugin.

    Examples
    --------
    >>> record = PluginRecord(
    ...     name="foo", folder="foo", installed_version_json="1.0.1", installed_version_xml="1.0.0"
    ... )
    >>> record.installed_version
    '1.0.1'
    >>> PluginRecord(name="foo", folder="foo").installed_version is None
    True
    """

    name: str
    folder: str
    expected_version: str | None = None
    installed_version_json: str | None = None
    installed_version_xml: str | None = None
    newest_version: str | None = None

    @property
    def installed_version(self) -> str | None:
        # package.json has to be right for npm publish, plugin.xml is often stale
        return self.installed_version_json or self.installed_version_xml


class _PluginPackageJson(pydantic.BaseModel):
    version: str | None = None


def read_descriptor_version(path: Path) -> str | None:
    """Read the ``version`` attribute of the root ``<plugin>`` element.

    Parameters
    ----------
    path : Path
        Path to a ``plugin.xml``.

    Returns
    -------
    str or None
        The version, or None if the file or the attribute is missing.

    Raises
    ------
    PluginFileError
        If the file is not well-formed XML or its root is not ``<plugin>``.

    Examples
    --------
    >>> import tempfile
    >>> d = Path(tempfile.mkdtemp())
    >>> p = d / "plugin.xml"
    >>> _ = p.write_text('<plugin xmlns="http://apache.org/cordova/ns/plugins/1.0" id="x" version="1.2.3"/>')
    >>> read_descriptor_version(p)
    '1.2.3'
    >>> read_descriptor_version(d / "missing.xml") is None
    True
    """
    if not path.exists():
        return None
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as exc:
        msg = f"{PrivatePath(path)}: invalid XML: {exc}"
        raise PluginFileError(msg) from exc
    except OSError as exc:
        msg = f"{PrivatePath(path)}: cannot read: {exc}"
        raise PluginFileError(msg) from exc
    # Cordova descriptors are usually namespaced: {http://apache.org/cordova/ns/plugins/1.0}plugin
    if root.tag.rpartition("}")[2] != "plugin":
        msg = f"{PrivatePath(path)}: root element is <{root.tag}>, expected <plugin>"
        raise PluginFileError(msg)
    return root.get("version")


def read_manifest_version(path: Path) -> str | None:
    """Read the ``version`` field of an installed plugin's ``package.json``.

    Examples
    --------
    >>> import tempfile
    >>> d = Path(tempfile.mkdtemp())
    >>> p = d / "package.json"
    >>> _ = p.write_text('{"name": "x", "version": "2.0.1"}')
    >>> read_manifest_version(p)
    '2.0.1'
    >>> _ = p.write_text('{"name": "x"}')
    >>> read_manifest_version(p) is None
    True
    """
    if not path.exists():
        return None
    try:
        raw = t.cast("object", json.loads(path.read_text(encoding="utf-8")))
        return _PluginPackageJson.model_validate(raw).version
    except (json.JSONDecodeError, pydantic.ValidationError, UnicodeDecodeError, OSError) as exc:
        msg = f"{PrivatePath(path)}: invalid package.json: {exc}"
        raise PluginFileError(msg) from exc


def read_plugin_inventory(
    declarations: t.Sequence[PluginDeclaration], settings: Settings
) -> list[PluginRecord]:
    """Build one `PluginRecord` per declaration, in declaration order.

    Parameters
    ----------
    declarations : Sequence[PluginDeclaration]
        Entries of ``cordovaPlugins``.
    settings : Settings
        Locates the ``plugins/`` directory.

    Returns
    -------
    list[PluginRecord]
        Records with name, folder and expected/installed versions filled in.
    """
    records: list[PluginRecord] = []
    for declaration in declarations:
        resolved = resolve_declaration(declaration)
        record = PluginRecord(
            name=resolved.name,
            folder=resolved.folder,
            expected_version=resolved.expected_version,
        )
        plugin_dir = settings.plugins_path / resolved.folder
        descriptor_path = plugin_dir / DESCRIPTOR_NAME
        if descriptor_path.exists():
            record.installed_version_json = read_manifest_version(plugin_dir / MANIFEST_NAME)
            record.installed_version_xml = read_descriptor_version(descriptor_path)
        else:
            log.debug("%s: %s not found, treating as not installed", record.name, descriptor_path)
        records.append(record)
    return records


# ---------------------------------------------------------------------------
# Registry lookup
# ---------------------------------------------------------------------------


def _registry_path(name: str) -> str:
    """Return the packument path for *name*.

    Examples
    --------
    >>> _registry_path("cordova-plugin-device")
    '/cordova-plugin-device'
    >>> _registry_path("@awesome-cordova-plugins/core")
    '/@awesome-cordova-plugins%2Fcore'
    """
    return "/" + name.replace("/", "%2F")


def _registry_client(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.registry_url,
        timeout=settings.timeout,
        transport=transport,
        headers={"Accept": "application/vnd.npm.install-v1+json"},
    )


class _Packument(pydantic.BaseModel):
    dist_tags: dict[str, str] = pydantic.Field(default_factory=dict, alias="dist-tags")


async def fetch_latest_version(client: httpx.AsyncClient, name: str) -> str:
    """Ask the registry for the ``latest`` dist-tag of *name*.

    Raises
    ------
    PackageNotFoundError
        If the registry answers 404 or the package has no ``latest`` tag.
    RegistryUnreachableError
        On transport errors, other HTTP errors or an unreadable response.
    """
    try:
        response = await client.get(_registry_path(name))
    except httpx.RequestError as exc:
        msg = f"{name}: registry request failed: {exc!r}"
        raise RegistryUnreachableError(msg) from exc

    if response.status_code == httpx.codes.NOT_FOUND:
        msg = f"{name}: package not found in registry"
        raise PackageNotFoundError(msg)
    try:
        response.raise_for_status()
        packument = _Packument.model_validate(t.cast("object", response.json()))
    except (httpx.HTTPStatusError, ValueError) as exc:
        msg = f"{name}: bad registry response: {exc}"
        raise RegistryUnreachableError(msg) from exc

    latest = packument.dist_tags.get("latest")
    if not latest:
        msg = f"{name}: registry has no 'latest' version"
        raise PackageNotFoundError(msg)
    log.debug("%s: latest is %s", name, latest)
    return latest


async def fetch_latest_versions(
    records: t.Sequence[PluginRecord],
    client: httpx.AsyncClient,
    on_progress: t.Callable[[], None] | None = None,
) -> list[str]:
    """Look up the newest version of every record concurrently.

    Parameters
    ----------
    records : Sequence[PluginRecord]
        Plugins to look up, by display name.
    client : httpx.AsyncClient
        Client bound to the registry.
    on_progress : callable, optional
        Called once per completed lookup.

    Returns
    -------
    list[str]
        Newest versions, in the same order as *records*.

    Raises
    ------
    RegistryError
        The first lookup failure. Remaining lookups are cancelled and nothing
        is returned.
    """

    async def _lookup(name: str) -> str:
        version = await fetch_latest_version(client, name)
        if on_progress is not None:
            on_progress()
        return version

    try:
        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(_lookup(record.name)) for record in records]
    except ExceptionGroup as group:
        raise group.exceptions[0]  # noqa: B904
    return [task.result() for task in tasks]


def attach_latest_versions(records: t.Sequence[PluginRecord], versions: t.Sequence[str]) -> None:
    """Store ``versions[i]`` as the newest version of ``records[i]``."""
    for record, version in zip(records, versions, strict=True):
        record.newest_version = version


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


class Emphasis(enum.Enum):
    """How a cell or line should stand out, independent of terminal styling."""

    PLAIN = "plain"
    WARN = "warn"
    ERROR = "error"
    HIGHLIGHT_UP = "highlight-up"
    HIGHLIGHT_DOWN = "highlight-down"


STYLES: dict[Emphasis, str] = {
    Emphasis.PLAIN: "",
    Emphasis.WARN: "bold yellow",
    Emphasis.ERROR: "bold red",
    Emphasis.HIGHLIGHT_UP: "bold green",
    Emphasis.HIGHLIGHT_DOWN: "bold red",
}


class Cell(t.NamedTuple):
    text: str
    emphasis: Emphasis = Emphasis.PLAIN


class Report(pydantic.BaseModel):
    """Rows of the comparison table plus the warnings found on the way."""

    rows: list[tuple[Cell, Cell, Cell, Cell]] = pydantic.Field(default_factory=list)
    warnings: list[str] = pydantic.Field(default_factory=list)


def compare_versions(left: str, right: str) -> int | None:
    """Compare two versions by semver precedence.

    Returns
    -------
    int or None
        1, 0 or -1; None if either side is not a version.

    Examples
    --------
    >>> compare_versions("10.0.0", "2.0.0")
    1
    >>> compare_versions("1.0.0", "1.0.0")
    0
    >>> compare_versions("1.0.0-beta.2", "1.0.0")
    -1
    >>> compare_versions("ecdb5276374a", "1.0.0") is None
    True
    """
    try:
        if nodesemver.gt(left, right, False):
            return 1
        if nodesemver.lt(left, right, False):
            return -1
    except ValueError:
        log.debug("cannot compare %r with %r", left, right)
        return None
    return 0


def is_outside_range(version: str, range_: str) -> bool:
    """Tell whether *version* falls outside the npm range *range_*.

    Values that are not versions or ranges (git refs, commit hashes) are never
    reported as violated.

    Examples
    --------
    >>> is_outside_range("2.5.0", "2.0.0")
    True
    >>> is_outside_range("1.4.2", "^1.2.0")
    False
    >>> is_outside_range("1.1.9", "~1.2.0")
    True
    >>> is_outside_range("1.0.0", "ecdb5276374aaeaa363d349e24d63d2e9942c97")
    False
    """
    if compare_versions(version, version) is None:
        return False
    try:
        if not nodesemver.valid_range(range_, False):
            log.debug("%r is not a version range", range_)
            return False
        return not nodesemver.satisfies(version, range_, False)
    except ValueError:
        log.debug("cannot check %r against %r", version, range_)
        return False


def reconcile(records: t.Iterable[PluginRecord]) -> Report:
    """Turn plugin records into table rows and warnings.

    Examples
    --------
    >>> report = reconcile([
    ...     PluginRecord(name="foo", folder="foo", expected_version="1.0.0",
    ...                  installed_version_json="1.0.0", newest_version="1.2.0"),
    ... ])
    >>> [cell.text for cell in report.rows[0]]
    ['foo', '1.0.0', '1.0.0', '1.2.0']
    >>> report.rows[0][3].emphasis
    <Emphasis.HIGHLIGHT_UP: 'highlight-up'>
    >>> report.warnings
    []
    """
    report = Report()
    for record in records:
        display_name = record.name
        json_version = record.installed_version_json
        xml_version = record.installed_version_xml

        if json_version and xml_version and json_version != xml_version:
            report.warnings.append(
                f"{record.name}: version in package.json({json_version}) does not match"
                f" plugin.xml({xml_version}), assuming version in package.json."
            )

        if record.name != record.folder:
            report.warnings.append(
                f"{record.name}: plugin npm name does not match its id from plugin.xml"
                f" ({record.folder})!"
            )
            display_name = f"{record.name} ({record.folder})"

        installed = record.installed_version
        newest = record.newest_version
        expected = record.expected_version
        installed_emphasis = expected_emphasis = newest_emphasis = Emphasis.PLAIN

        if newest and installed:
            order = compare_versions(newest, installed)
            if order == 1:
                newest_emphasis = Emphasis.HIGHLIGHT_UP
            elif order == -1:
                # registry says latest is older than what we have
                newest_emphasis = Emphasis.HIGHLIGHT_DOWN

        if expected and installed and is_outside_range(installed, expected):
            installed_emphasis = expected_emphasis = Emphasis.ERROR

        report.rows.append(
            (
                Cell(display_name),
                Cell(expected or ABSENT, expected_emphasis),
                Cell(installed or ABSENT, installed_emphasis),
                Cell(newest or ABSENT, newest_emphasis),
            )
        )
    return report


def _styled(cell: Cell) -> rich.text.Text:
    return rich.text.Text(cell.text, style=STYLES[cell.emphasis])


def render_report(report: Report, out: rich.console.Console) -> None:
    """Print warnings, the notices and the comparison table to *out*."""
    out.print()
    for warning in report.warnings:
        out.print(_styled(Cell(warning, Emphasis.WARN)))

    out.print(rich.text.Text(NOTICES[0]))
    out.print(_styled(Cell(NOTICES[1], Emphasis.WARN)))

    table = rich.table.Table()
    for header in ("Plugin name", "Expected", "Installed", "Newest"):
        table.add_column(header)
    for row in report.rows:
        table.add_row(*(_styled(cell) for cell in row))

    out.print()
    out.print(table)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _print_progress() -> None:
    err_console.print(".", end="")


async def run_check(
    settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None
) -> Report:
    """Read the inventory, fetch newest versions, then print the report.

    Parameters
    ----------
    settings : Settings
        Project and registry locations.
    transport : httpx.AsyncBaseTransport, optional
        Transport for the registry client; the default network transport when None.

    Returns
    -------
    Report
        The report that was printed.
    """
    manifest = load_project_manifest(settings)
    records = read_plugin_inventory(manifest.cordova_plugins, settings)
    log.debug("read %d plugin(s) from %s", len(records), PrivatePath(settings.plugins_path))

    err_console.print("fetching info from npm", end="")
    try:
        async with _registry_client(settings, transport) as client:
            versions = await fetch_latest_versions(records, client, on_progress=_print_progress)
    finally:
        err_console.print()
    attach_latest_versions(records, versions)

    report = reconcile(records)
    render_report(report, console)
    return report


def _configure_logging(*, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[rich.logging.RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.command()
def main(
    root: t.Annotated[
        Path,
        typer.Option(
            help="Project root containing package.json and plugins/.",
            envvar="CORDOVA_PROJECT_ROOT",
            file_okay=False,
        ),
    ] = Path(),
    plugins_dir: t.Annotated[
        str, typer.Option(help="Plugins directory, relative to the project root.")
    ] = "plugins",
    registry: t.Annotated[
        str, typer.Option(help="npm registry base URL.", envvar="NPM_REGISTRY_URL")
    ] = NPM_REGISTRY_URL,
    timeout: t.Annotated[
        float, typer.Option(help="Per-request registry timeout in seconds.")
    ] = 30.0,
    verbose: t.Annotated[bool, typer.Option("--verbose", "-v", help="Log debug output.")] = False,
) -> None:
    """Compare expected, installed and newest versions of the project's Cordova plugins."""
    _configure_logging(verbose=verbose)
    settings = Settings(
        root=root.resolve(), plugins_dir=plugins_dir, registry_url=registry, timeout=timeout
    )
    try:
        _ = asyncio.run(run_check(settings))
    except Exception as exc:
        # every failure is fatal: print it where the report would have gone
        console.print()
        console.print(rich.text.Text(f"{type(exc).__name__}: {exc}", style="bold red"))
        console.print_exception()
        raise SystemExit(1) from exc


if __name__ == "__main__":
    app()

"""Template scaffolding for provider descriptors.

Providers never write descriptors by hand. A template source supplies the
base files and one partial per resource kind; the Scaffolder renders them
with Jinja2 into a target directory.

Template source layout:

    template-docker-compose/
      files/                  rendered into the target on init()
        docker-compose.yaml
      partials/
        Postgres/             rendered on run_partial(..., 'Postgres', ...)
          docker-compose.yaml

Rendered YAML files are merged into existing target files (mappings merged
recursively, other values replaced), so each partial contributes its
resources to the single shared descriptor.

Sources are either local directories or https://github.com/<owner>/<repo>
URLs, fetched as tarballs.

Local tags such as CloudFormation's `!Ref` or `!GetAtt` survive the merge:
they load as TaggedValue and are written back in short form.
"""

import logging
import shutil
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import requests
import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

logger = logging.getLogger(__name__)

# Records which templates initialized a target directory
MARKER_FILE = '.oplat-template.yaml'

FILES_DIR = 'files'
PARTIALS_DIR = 'partials'
YAML_SUFFIXES = ('.yaml', '.yml')
DOWNLOAD_TIMEOUT = 60


class ScaffoldError(Exception):
    """Template fetch or render failure."""


class TemplateInitialized(ScaffoldError):
    """Target directory was already initialized with this template."""

    def __init__(self, template_name: str, target_dir: Path):
        self.template_name = template_name
        self.target_dir = target_dir
        super().__init__(f"Template '{template_name}' already initialized in {target_dir}")


@dataclass
class TaggedValue:
    """A YAML node carrying a local tag, e.g. `!Ref mydbSecret`."""
    tag: str
    value: Any


class TemplateLoader(yaml.SafeLoader):
    """SafeLoader that keeps local `!` tags instead of rejecting them."""


class TemplateDumper(yaml.SafeDumper):
    """SafeDumper that writes TaggedValue back with its tag."""


def _construct_tagged(loader, tag_suffix, node):
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return TaggedValue('!' + tag_suffix, value)


def _represent_tagged(dumper, data: TaggedValue):
    if isinstance(data.value, dict):
        return dumper.represent_mapping(data.tag, data.value)
    if isinstance(data.value, list):
        return dumper.represent_sequence(data.tag, data.value)
    return dumper.represent_scalar(data.tag, str(data.value))


TemplateLoader.add_multi_constructor('!', _construct_tagged)
TemplateDumper.add_representer(TaggedValue, _represent_tagged)


def load_template_yaml(text: str):
    """Parse rendered template YAML, keeping local tags."""
    return yaml.load(text, Loader=TemplateLoader)


def dump_template_yaml(content, stream=None):
    """Emit template YAML in document order, short-form tags included."""
    return yaml.dump(content, stream, Dumper=TemplateDumper, sort_keys=False, default_flow_style=False)


def template_name_from_source(source: str) -> str:
    """Template name is the last path segment of the source."""
    name = source.rstrip('/').split('/')[-1]
    if name.endswith('.git'):
        name = name[:-4]
    if not name:
        raise ScaffoldError(f"Cannot derive a template name from '{source}'")
    return name


def deep_merge(base: dict, overlay: dict) -> dict:
    """Merge overlay into a copy of base; nested mappings are merged."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Scaffolder:
    """Fetches template sources and renders them into target directories."""

    def __init__(self, cache_dir: Optional[Path] = None):
        """Initialize scaffolder.

        Args:
            cache_dir: Where fetched templates are kept. A temp dir if not
                given; that one is removed by cleanup().
        """
        self._owns_cache = cache_dir is None
        self.cache_dir = Path(cache_dir) if cache_dir else Path(tempfile.mkdtemp(prefix='oplat-templates-'))
        self._templates: dict[str, Path] = {}

    def __enter__(self) -> 'Scaffolder':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        """Remove the temp cache dir this scaffolder created."""
        self._templates.clear()
        if self._owns_cache:
            shutil.rmtree(self.cache_dir, ignore_errors=True)
            logger.debug(f"Removed template cache {self.cache_dir}")

    def init(self, source: str, target_dir: Path) -> str:
        """Fetch a template and render its base files into target_dir.

        Returns:
            The template name, used with run_partial()

        Raises:
            TemplateInitialized: If target_dir already holds this template
            ScaffoldError: If the template cannot be fetched or rendered
        """
        target_dir = Path(target_dir)
        name = template_name_from_source(source)
        template_dir = self._fetch(source, name)

        marker = _read_marker(target_dir)
        if name in marker:
            raise TemplateInitialized(name, target_dir)

        target_dir.mkdir(parents=True, exist_ok=True)
        files_dir = template_dir / FILES_DIR
        if files_dir.is_dir():
            self._render_tree(files_dir, {}, target_dir)

        marker[name] = source
        with open(target_dir / MARKER_FILE, 'w', encoding='utf-8') as f:
            yaml.safe_dump(marker, f, sort_keys=True)
        logger.debug(f"Initialized template {name} in {target_dir}")
        return name

    def run_partial(self, template_name: str, partial: str, context: dict, target_dir: Path) -> None:
        """Render one partial of an initialized template into target_dir.

        Args:
            template_name: Name returned by init()
            partial: Partial name (the resource kind)
            context: Render context (manifest document)
            target_dir: Directory holding the descriptor

        Raises:
            ScaffoldError: If the template or partial is unknown, or rendering fails
        """
        template_dir = self._templates.get(template_name)
        if template_dir is None:
            # Target may have been initialized by an earlier invocation
            source = _read_marker(Path(target_dir)).get(template_name)
            if source is None:
                raise ScaffoldError(f"Template '{template_name}' is not initialized in {target_dir}")
            template_dir = self._fetch(source, template_name)

        partial_dir = template_dir / PARTIALS_DIR / partial
        if not partial_dir.is_dir():
            available = sorted(p.name for p in (template_dir / PARTIALS_DIR).glob('*') if p.is_dir())
            raise ScaffoldError(
                f"Partial '{partial}' not found in template '{template_name}'. "
                f"Available: {', '.join(available) if available else 'none'}"
            )

        render_context = dict(context)
        render_context['manifest'] = context
        self._render_tree(partial_dir, render_context, Path(target_dir))
        logger.debug(f"Rendered partial {template_name}/{partial} into {target_dir}")

    def _fetch(self, source: str, name: str) -> Path:
        """Return the local directory of a template, fetching it once."""
        if name in self._templates:
            return self._templates[name]

        dest = self.cache_dir / name
        local = Path(source).expanduser()
        if local.is_dir():
            if dest.exists():
                shutil.rmtree(dest)
            shutil.copytree(local, dest)
        elif source.startswith('https://github.com/'):
            self._download_github(source, dest)
        else:
            raise ScaffoldError(f"Template source not found: {source}")

        self._templates[name] = dest
        return dest

    def _download_github(self, source: str, dest: Path) -> None:
        """Download and unpack a GitHub repository tarball."""
        url = source.rstrip('/')
        if url.endswith('.git'):
            url = url[:-4]
        url = f"{url}/archive/HEAD.tar.gz"
        logger.info(f"Fetching template {url}")
        try:
            resp = requests.get(url, timeout=DOWNLOAD_TIMEOUT)
        except requests.exceptions.RequestException as e:
            raise ScaffoldError(f"Cannot download template {source}: {e}") from e
        if resp.status_code != 200:
            raise ScaffoldError(f"Cannot download template {source}: HTTP {resp.status_code}")

        with tempfile.TemporaryDirectory(prefix='oplat-archive-') as tmp:
            archive = Path(tmp) / 'template.tar.gz'
            archive.write_bytes(resp.content)
            unpack_dir = Path(tmp) / 'unpacked'
            try:
                with tarfile.open(archive, 'r:gz') as tar:
                    tar.extractall(unpack_dir, filter='data')
            except tarfile.TarError as e:
                raise ScaffoldError(f"Invalid template archive from {source}: {e}") from e

            # GitHub archives hold a single <repo>-<ref>/ directory
            roots = [p for p in unpack_dir.iterdir() if p.is_dir()]
            if len(roots) != 1:
                raise ScaffoldError(f"Unexpected archive layout from {source}")
            if dest.exists():
                shutil.rmtree(dest)
            shutil.move(str(roots[0]), str(dest))

    def _render_tree(self, src_dir: Path, context: dict, target_dir: Path) -> None:
        """Render every file under src_dir into the same relative path in target_dir."""
        env = Environment(
            loader=FileSystemLoader(str(src_dir)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        for path in sorted(src_dir.rglob('*')):
            if not path.is_file():
                continue
            rel = path.relative_to(src_dir)
            try:
                rendered = env.get_template(rel.as_posix()).render(**context)
            except TemplateError as e:
                raise ScaffoldError(f"Failed to render {path}: {e}") from e
            _write_rendered(target_dir / rel, rendered)


def _write_rendered(dest: Path, rendered: str) -> None:
    """Write rendered content, merging YAML mappings into an existing file."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    if dest.suffix not in YAML_SUFFIXES:
        dest.write_text(rendered, encoding='utf-8')
        return

    try:
        overlay = load_template_yaml(rendered)
    except yaml.YAMLError as e:
        raise ScaffoldError(f"Rendered template for {dest.name} is not valid YAML: {e}") from e

    existing = None
    if dest.exists():
        try:
            existing = load_template_yaml(dest.read_text(encoding='utf-8'))
        except yaml.YAMLError as e:
            raise ScaffoldError(f"Existing {dest} is not valid YAML: {e}") from e

    if isinstance(existing, dict) and isinstance(overlay, dict):
        content = deep_merge(existing, overlay)
    elif overlay is None and existing is not None:
        content = existing
    else:
        content = overlay if overlay is not None else {}

    with open(dest, 'w', encoding='utf-8') as f:
        dump_template_yaml(content, f)


def _read_marker(target_dir: Path) -> dict:
    marker_path = target_dir / MARKER_FILE
    if not marker_path.exists():
        return {}
    data = yaml.safe_load(marker_path.read_text(encoding='utf-8'))
    return data if isinstance(data, dict) else {}

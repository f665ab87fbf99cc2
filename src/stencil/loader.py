"""Reading template sources and render data from disk."""

import glob
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, List, Tuple, Union

import yaml

if TYPE_CHECKING:
    from .template import TemplateSet

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

JSON_SUFFIXES = {".json"}
YAML_SUFFIXES = {".yaml", ".yml"}


class DataFileError(ValueError):
    """A data file could not be decoded."""

    pass


def read_template_files(paths: Iterable[PathLike]) -> List[Tuple[str, str]]:
    """Read template files as (name, source) pairs.

    Each template is named by its file's base name, so files with the same
    base name in different directories replace one another in order.

    Raises:
        OSError: If a file cannot be read
    """
    pairs = []
    for path in paths:
        path = Path(path)
        pairs.append((path.name, path.read_text(encoding="utf-8")))
    return pairs


def collect_template_paths(root: PathLike, pattern: str = "*") -> List[Path]:
    """Template files under ``root``.

    A file is returned as-is; a directory is searched recursively for files
    whose name matches ``pattern``, in sorted order.

    Raises:
        FileNotFoundError: If ``root`` does not exist
    """
    root = Path(root)
    if root.is_file():
        return [root]
    if not root.is_dir():
        raise FileNotFoundError(f"Template path not found: {root}")
    return sorted(p for p in root.rglob(pattern) if p.is_file())


def parse_files(template_set: "TemplateSet", paths: Iterable[PathLike]) -> "TemplateSet":
    """Parse template files into a set as a single all-or-nothing unit.

    Raises:
        ValueError: If no paths are given
        OSError: If a file cannot be read; nothing is parsed
        ParseError: If any file is malformed; the set is unchanged
    """
    paths = list(paths)
    if not paths:
        raise ValueError("no files named in call to parse_files")
    pairs = read_template_files(paths)
    logger.debug(f"Parsing {len(pairs)} template file(s) into {template_set.name!r}")
    return template_set.parse_named(pairs)


def parse_glob(template_set: "TemplateSet", pattern: str) -> "TemplateSet":
    """Parse every file matching a glob pattern, in sorted order.

    Raises:
        ValueError: If the pattern matches no files
    """
    paths = sorted(p for p in glob.glob(pattern) if Path(p).is_file())
    if not paths:
        raise ValueError(f"pattern matches no files: {pattern!r}")
    return parse_files(template_set, paths)


def load_data_file(path: PathLike) -> Any:
    """Load render data from a file.

    ``.json`` files are decoded as JSON, ``.yaml``/``.yml`` files as YAML;
    any other file is returned as a plain string.

    Raises:
        OSError: If the file cannot be read
        DataFileError: If the content cannot be decoded
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in JSON_SUFFIXES:
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise DataFileError(f"Invalid JSON in {path}: {e}") from e
    if suffix in YAML_SUFFIXES:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise DataFileError(f"Invalid YAML in {path}: {e}") from e
    return text

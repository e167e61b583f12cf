"""
Effect and show definition loaders.

Definitions are YAML (or JSON, which YAML parses too) files validated into
the immutable models of ``stagebeat.core.models``. Effects can be written
back with ``save_effect`` in the same schema they are read from.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional, Union

import structlog
import yaml
from pydantic import ValidationError

from stagebeat.core.exceptions import (
    EffectDefinitionError,
    MalformedCuePositionError,
    ShowError,
    ShowNotFoundError,
)
from stagebeat.core.models import CuePosition, Effect, Show, summarize_validation_error

logger = structlog.get_logger()

DEFINITION_SUFFIXES = (".yaml", ".yml", ".json")

PathLike = Union[str, Path]


def _read_document(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


def _is_definition_file(path: Path) -> bool:
    return path.is_file() and path.suffix in DEFINITION_SUFFIXES and not path.name.startswith(".")


# =============================================================================
# Effects
# =============================================================================


def parse_effect(data: Any, source: str = "<memory>") -> Effect:
    """Validate one raw effect definition."""
    if not isinstance(data, dict):
        raise EffectDefinitionError(source, "definition must be a mapping")
    try:
        return Effect.model_validate(data)
    except ValidationError as e:
        raise EffectDefinitionError(source, summarize_validation_error(e)) from e


def load_effect_file(path: PathLike) -> List[Effect]:
    """Load a file holding one effect, a list of effects or ``{effects: [...]}``."""
    path = Path(path)
    try:
        document = _read_document(path)
    except (OSError, yaml.YAMLError) as e:
        raise EffectDefinitionError(str(path), str(e)) from e

    if isinstance(document, dict) and "effects" in document:
        document = document["effects"]
    if isinstance(document, list):
        return [parse_effect(item, f"{path}[{i}]") for i, item in enumerate(document)]
    return [parse_effect(document, str(path))]


def load_effects_dir(directory: PathLike) -> List[Effect]:
    """
    Load every effect file in ``directory``.

    Files that fail to parse are logged and skipped; a missing directory
    yields no effects.
    """
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning("Effects directory not found", path=str(directory))
        return []

    effects: List[Effect] = []
    for path in sorted(directory.iterdir()):
        if not _is_definition_file(path):
            continue
        try:
            effects.extend(load_effect_file(path))
        except EffectDefinitionError as e:
            logger.warning("Skipping invalid effect file", path=str(path), error=e.reason)

    logger.info("Effects loaded", path=str(directory), count=len(effects))
    return effects


def save_effect(effect: Effect, directory: PathLike) -> Path:
    """Write ``effect`` to ``<directory>/<id>.yaml``."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{effect.id}.yaml"
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(effect.to_definition(), f, default_flow_style=False, sort_keys=False)
    logger.info("Effect saved", effect_id=effect.id, path=str(path))
    return path


def delete_effect(effect_id: str, directory: PathLike) -> bool:
    directory = Path(directory)
    for suffix in DEFINITION_SUFFIXES:
        path = directory / f"{effect_id}{suffix}"
        if path.is_file():
            path.unlink()
            logger.info("Effect deleted", effect_id=effect_id, path=str(path))
            return True
    return False


# =============================================================================
# Shows
# =============================================================================


def parse_show(data: Any, default_name: str = "show") -> Show:
    """
    Validate one raw show definition.

    Cue positions are checked first so a malformed one is reported with
    the cue it belongs to.
    """
    if not isinstance(data, dict):
        raise ShowError(f"Show '{default_name}' must be a mapping")

    cues = data.get("cues") or []
    if not isinstance(cues, list):
        raise ShowError(f"Show '{default_name}': cues must be a list")

    for index, cue in enumerate(cues):
        if not isinstance(cue, dict):
            raise ShowError(f"Show '{default_name}': cue {index} must be a mapping")
        label = str(cue.get("id") or cue.get("name") or f"#{index}")
        position = cue.get("position")
        if not isinstance(position, dict):
            raise MalformedCuePositionError(label, "position must be a mapping")
        try:
            CuePosition.model_validate(position)
        except MalformedCuePositionError as e:
            raise MalformedCuePositionError(label, e.reason) from None
        except ValidationError as e:
            raise MalformedCuePositionError(label, summarize_validation_error(e)) from e

    try:
        return Show.model_validate({**data, "name": data.get("name") or default_name})
    except ValidationError as e:
        raise ShowError(f"Invalid show '{default_name}': {summarize_validation_error(e)}") from e


def load_show_file(path: PathLike) -> Show:
    path = Path(path)
    try:
        document = _read_document(path)
    except (OSError, yaml.YAMLError) as e:
        raise ShowError(f"Cannot read show file {path}: {e}") from e
    return parse_show(document, default_name=path.stem)


class ShowLibrary:
    """Shows available by name in a directory (``<name>.yaml``)."""

    def __init__(self, directory: PathLike):
        self.directory = Path(directory)

    def available_shows(self) -> List[str]:
        if not self.directory.is_dir():
            return []
        return sorted(path.stem for path in self.directory.iterdir() if _is_definition_file(path))

    def find(self, name: str) -> Optional[Path]:
        for suffix in DEFINITION_SUFFIXES:
            path = self.directory / f"{name}{suffix}"
            if path.is_file():
                return path
        return None

    def load(self, name: str) -> Show:
        """Raises ShowNotFoundError when no file matches ``name``."""
        path = self.find(name)
        if path is None:
            raise ShowNotFoundError(name, self.available_shows())
        show = load_show_file(path)
        logger.info("Show file loaded", show=show.name, path=str(path), cues=len(show.cues))
        return show

import logging
from pathlib import Path
from typing import Dict, List, Optional

import yaml

log = logging.getLogger(__name__)

DEFAULT_PERSONA_PATH = Path(__file__).with_name("persona_config.yaml")
SECTION_ORDER = ("identity", "tone", "vocabulary", "privacy", "accounts")


class PersonaConfig:
    """Persona prompt assembled from YAML, reloaded when either file changes."""

    def __init__(
        self,
        *,
        default_path: Path = DEFAULT_PERSONA_PATH,
        override_path: Optional[Path] = None,
    ) -> None:
        self.default_path = default_path
        self.override_path = override_path
        self._cached_prompt = ""
        self._mtimes: Dict[Path, Optional[float]] = {}
        self._load()

    def _read_config(self, path: Optional[Path]) -> Dict[str, List[str]]:
        if path is None or not path.exists():
            return {}
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            log.warning("failed to read persona config %s: %s", path, exc)
            return {}
        sections: Dict[str, List[str]] = {}
        if isinstance(raw, dict):
            for key, value in raw.items():
                slug = str(key).strip().lower()
                if isinstance(value, (list, tuple)):
                    lines = [
                        " ".join(str(item or "").split())
                        for item in value
                        if str(item or "").strip()
                    ]
                elif isinstance(value, str):
                    lines = [" ".join(value.split())]
                else:
                    lines = []
                if lines:
                    sections[slug] = lines
        return sections

    def _compose_prompt(self, data: Dict[str, List[str]]) -> str:
        segments: List[str] = []
        for key in SECTION_ORDER:
            segments.extend(data.get(key) or [])
        return " ".join(segment.strip() for segment in segments if segment.strip())

    def _load(self) -> None:
        merged = dict(self._read_config(self.default_path))
        for key, lines in self._read_config(self.override_path).items():
            merged[key] = lines
        prompt = self._compose_prompt(merged)
        if prompt and prompt != self._cached_prompt:
            if self._cached_prompt:
                log.info("persona prompt reloaded (%d chars)", len(prompt))
            self._cached_prompt = prompt
        self._mtimes = {path: self._mtime(path) for path in self._paths()}

    def _paths(self) -> List[Path]:
        return [path for path in (self.default_path, self.override_path) if path is not None]

    @staticmethod
    def _mtime(path: Path) -> Optional[float]:
        try:
            return path.stat().st_mtime if path.exists() else None
        except OSError:
            return None

    def get_prompt(self) -> str:
        if any(self._mtime(path) != self._mtimes.get(path) for path in self._paths()):
            self._load()
        return self._cached_prompt

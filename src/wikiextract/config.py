"""
Settings for an extraction run.

Settings are plain dataclasses grouped by concern. They can be built in code,
loaded from a YAML file, or both (CLI flags override file values):

    source:
      url: https://dumps.wikimedia.org
      language: en
      version: latest
      max_retries: 5
    pipeline:
      queue_capacity: 8
      parse_workers: 0
    text:
      markdown: true
      include_headings: true
    output:
      directory: dump
      generate: [text, dictionary, redirects, metadata]

Unknown keys are rejected so that typos do not silently fall back to
defaults.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from wikiextract.errors import ConfigError


DEFAULT_MIRROR = "https://dumps.wikimedia.org"

# Lowercase section titles whose content is not prose
DEFAULT_SKIP_SECTIONS = [
    "see also",
    "references",
    "further reading",
    "external links",
    "notes",
    "bibliography",
]

# Template name -> positional parameter (1-based) rendered as text.
# Everything else is dropped.
DEFAULT_KEPT_TEMPLATES = {
    "lang": 2,
    "nowrap": 1,
    "nobr": 1,
    "small": 1,
    "w": 1,
    "gloss": 1,
    "transl": 2,
}


@dataclass
class SourceSettings:
    """Where the archive comes from and how it is fetched."""

    url: Optional[str] = None  # mirror base URL or direct archive URL
    path: Optional[Path] = None  # local archive
    language: str = "en"
    version: str = "latest"
    expected_digest: Optional[str] = None  # "sha1:<hex>" for single-file input
    connect_timeout: float = 30.0
    read_timeout: float = 60.0
    max_retries: int = 5
    backoff_base: float = 1.0
    backoff_max: float = 60.0
    user_agent: str = "wikiextract/0.3 (Wikipedia dump text extractor)"


@dataclass
class PipelineSettings:
    """Chunk sizes, memory watermarks and concurrency."""

    read_chunk_size: int = 256 * 1024
    decompressed_chunk_size: int = 256 * 1024
    queue_capacity: int = 8
    max_page_bytes: int = 128 * 1024 * 1024
    parse_workers: int = 0
    flush_interval: int = 100
    max_pages: Optional[int] = None
    namespaces: Optional[list[int]] = field(default_factory=lambda: [0])


@dataclass
class TextOptions:
    """How page bodies are rendered into the text dump."""

    markdown: bool = False
    include_headings: bool = False
    include_preformatted: bool = False
    include_tables: bool = True
    only_sentences: bool = True
    skip_sections: list[str] = field(default_factory=lambda: list(DEFAULT_SKIP_SECTIONS))
    kept_templates: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_KEPT_TEMPLATES))
    max_token_length: int = 64


GENERATORS = ("text", "dictionary", "redirects", "metadata")


@dataclass
class GeneratorOptions:
    """Selection of generated artifacts."""

    text: bool = True
    dictionary: bool = True
    redirects: bool = True
    metadata: bool = False

    def any(self) -> bool:
        return self.text or self.dictionary or self.redirects or self.metadata

    @classmethod
    def from_names(cls, names: list[str]) -> "GeneratorOptions":
        unknown = set(names) - set(GENERATORS)
        if unknown:
            raise ConfigError(f"unknown generator(s): {', '.join(sorted(unknown))}")
        return cls(**{name: name in names for name in GENERATORS})


@dataclass
class OutputSettings:
    """Output directory and artifact layout."""

    directory: Path = Path("dump")
    text_layout: str = "jsonl"  # jsonl or txt
    diagnostics: bool = True

    def __post_init__(self) -> None:
        self.directory = Path(self.directory)
        if self.text_layout not in ("jsonl", "txt"):
            raise ConfigError(f"text_layout must be 'jsonl' or 'txt', got {self.text_layout!r}")


@dataclass
class Settings:
    """Complete run configuration."""

    source: SourceSettings = field(default_factory=SourceSettings)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    text: TextOptions = field(default_factory=TextOptions)
    generate: GeneratorOptions = field(default_factory=GeneratorOptions)
    output: OutputSettings = field(default_factory=OutputSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """
        Build settings from a nested mapping (as loaded from YAML).

        Raises:
            ConfigError: On unknown sections/keys or wrongly typed values
        """
        if not isinstance(data, dict):
            raise ConfigError("settings must be a mapping")

        known = {"source", "pipeline", "text", "output"}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"unknown settings section(s): {', '.join(sorted(unknown))}")

        output_data = dict(data.get("output") or {})
        generate = output_data.pop("generate", None)

        settings = cls(
            source=_build(SourceSettings, data.get("source")),
            pipeline=_build(PipelineSettings, data.get("pipeline")),
            text=_build(TextOptions, data.get("text")),
            output=_build(OutputSettings, output_data),
        )
        if settings.source.path is not None:
            settings.source.path = Path(settings.source.path)
        if generate is not None:
            if not isinstance(generate, list):
                raise ConfigError("output.generate must be a list of generator names")
            settings.generate = GeneratorOptions.from_names([str(g) for g in generate])
        return settings


def _build(cls, values: Optional[dict[str, Any]]):
    """Instantiate a settings dataclass, rejecting unknown keys."""
    if values is None:
        return cls()
    if not isinstance(values, dict):
        raise ConfigError(f"{cls.__name__} expects a mapping, got {type(values).__name__}")

    allowed = {f.name for f in fields(cls)}
    unknown = set(values) - allowed
    if unknown:
        raise ConfigError(f"unknown {cls.__name__} key(s): {', '.join(sorted(unknown))}")

    try:
        return cls(**values)
    except TypeError as e:
        raise ConfigError(f"invalid {cls.__name__}: {e}") from e


def load_settings(path: Path) -> Settings:
    """
    Load settings from a YAML file.

    Args:
        path: Path to the YAML settings file

    Returns:
        Settings with file values applied over defaults

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigError: If the file is not valid YAML or has unknown keys
    """
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e

    return Settings.from_dict(data or {})

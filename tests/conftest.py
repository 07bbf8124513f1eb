"""
Pytest configuration and fixtures for SSTI Guard tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest


class Post:
    """A small model object handed to templates."""

    def __init__(self, title: str = "Hello") -> None:
        self.title = title
        self.Title = title.upper()

    def getTitle(self) -> str:
        return self.title

    def setTitle(self, title: str) -> None:
        self.title = title


class FeaturedPost(Post):
    """Subclass used for inheritance-transparent matching."""


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def post_class() -> type[Post]:
    """The Post model class."""
    return Post


@pytest.fixture
def featured_post_class() -> type[FeaturedPost]:
    """The FeaturedPost model class."""
    return FeaturedPost


@pytest.fixture
def post() -> Post:
    """A Post instance."""
    return Post("Hello")


@pytest.fixture
def site_dirs(temp_dir: Path) -> tuple[Path, Path]:
    """Create theme/ and storage/ template directories."""
    theme = temp_dir / "themes" / "default"
    storage = temp_dir / "storage"
    theme.mkdir(parents=True)
    storage.mkdir(parents=True)
    return theme, storage


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a guard config YAML using the legacy marker form."""
    return """
enabled: true
mode: auto
storage_path: /srv/site/storage
policy:
  filters:
    - "@defaults"
    - markdown
  methods:
    - "@defaults"
    - app.models.Post: ["get*"]
"""


@pytest.fixture
def strict_config_yaml() -> str:
    """Return a guard config YAML that replaces every default."""
    return """
storage_path: /srv/site/storage
policy:
  tags: [if]
  filters: [upper]
  functions: []
  methods: {}
  properties: {}
"""

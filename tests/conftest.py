"""
Shared fixtures for CardForge tests.
"""

from pathlib import Path

import pytest
from PIL import Image


@pytest.fixture
def make_image(tmp_path):
    """Factory writing a solid-color image and returning its path."""

    def _make(name, size=(200, 200), color=(40, 120, 200), mode="RGB", fmt="PNG", directory=None):
        directory = Path(directory or tmp_path)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        Image.new(mode, size, color).save(path, format=fmt)
        return path

    return _make

import pytest

import builders


@pytest.fixture
def single_pixel() -> bytes:
    return builders.single_pixel_gif()


@pytest.fixture
def animated() -> bytes:
    return builders.animated_gif()

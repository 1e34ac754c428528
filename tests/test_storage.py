import io
import os

import pytest
from PIL import Image

import config
import storage
from conftest import png_bytes, touch


def test_check_filename_rejects_traversal():
    for bad in ("", ".", "..", "../x.jpg", "a/b.jpg", "a\\b.jpg"):
        with pytest.raises(ValueError):
            storage.check_filename(bad)
    assert storage.check_filename("car.jpg") == "car.jpg"


def test_optimize_image_resizes_and_reencodes():
    out = storage.optimize_image(png_bytes((1600, 400)))
    image = Image.open(io.BytesIO(out))
    assert image.format == "JPEG"
    assert max(image.size) == config.IMAGE_MAX_SIZE


def test_optimize_image_flattens_transparency():
    image = Image.open(io.BytesIO(storage.optimize_image(png_bytes((100, 100), mode="RGBA"))))
    assert image.mode == "RGB"


def test_optimize_image_rejects_garbage():
    with pytest.raises(ValueError):
        storage.optimize_image(b"not an image")


def test_save_temp_image_and_move():
    name = storage.save_temp_image(config.CDN_TEMP_CARS, "clio.png", png_bytes())
    assert name.startswith("clio_") and name.endswith(".jpg")
    assert storage.exists(config.CDN_TEMP_CARS, name)

    moved = storage.move_temp_file(config.CDN_TEMP_CARS, config.CDN_CARS, name, "car1")
    assert moved == "car1.jpg"
    assert storage.exists(config.CDN_CARS, "car1.jpg")
    assert not storage.exists(config.CDN_TEMP_CARS, name)


def test_move_missing_temp_file():
    assert storage.move_temp_file(config.CDN_TEMP_CARS, config.CDN_CARS, "missing.jpg") is None


def test_save_temp_file_keeps_extension():
    name = storage.save_temp_file(config.CDN_TEMP_LICENSES, "license.PDF", b"%PDF")
    assert name.endswith(".pdf")
    with open(os.path.join(config.CDN_TEMP_LICENSES, name), "rb") as f:
        assert f.read() == b"%PDF"


def test_delete_file():
    touch(config.CDN_USERS, "avatar.jpg")
    assert storage.delete_file(config.CDN_USERS, "avatar.jpg")
    assert not storage.delete_file(config.CDN_USERS, "avatar.jpg")
    assert not storage.delete_file(config.CDN_USERS, None)

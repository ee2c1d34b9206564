from __future__ import annotations

import hashlib
import json
import tarfile

import pytest

from loadline.errors import ImageGenerationError
from loadline.synthetic import (
    OCI_CONFIG_MEDIA_TYPE,
    OCI_LAYER_MEDIA_TYPE,
    OCI_MANIFEST_MEDIA_TYPE,
    generate_image,
    split_payload,
)


def test_split_payload_gives_remainder_to_last_layer() -> None:
    assert split_payload(1025, 4) == [256, 256, 256, 257]
    assert split_payload(1024, 1) == [1024]
    assert sum(split_payload(10240, 32)) == 10240


def test_generated_layers_hold_random_payload() -> None:
    with generate_image(4096, 4) as image:
        assert image.layer_count == 4
        assert image.payload_size == 4096

        for layer in image.layers:
            data = layer.open().read()
            assert layer.descriptor.digest == "sha256:" + hashlib.sha256(data).hexdigest()
            assert layer.descriptor.size == len(data)
            assert layer.descriptor.media_type == OCI_LAYER_MEDIA_TYPE

            with tarfile.open(fileobj=layer.open(), mode="r") as archive:
                members = archive.getmembers()
            assert len(members) == 1
            assert members[0].size == 1024
            assert members[0].name.startswith("random_file_")

        assert image.total_size == sum(layer.descriptor.size for layer in image.layers)


def test_manifest_and_config_describe_the_layers() -> None:
    with generate_image(2048, 2) as image:
        manifest = json.loads(image.manifest_bytes)
        config = json.loads(image.config_bytes)
        digests = [layer.descriptor.digest for layer in image.layers]

        assert manifest["mediaType"] == OCI_MANIFEST_MEDIA_TYPE
        assert manifest["config"]["mediaType"] == OCI_CONFIG_MEDIA_TYPE
        assert manifest["config"]["digest"] == image.config.digest
        assert [item["digest"] for item in manifest["layers"]] == digests
        assert config["rootfs"]["diff_ids"] == digests
        assert image.manifest_digest == "sha256:" + hashlib.sha256(image.manifest_bytes).hexdigest()


def test_images_are_never_identical() -> None:
    with generate_image(1024, 1) as first, generate_image(1024, 1) as second:
        assert first.layers[0].descriptor.digest != second.layers[0].descriptor.digest


def test_close_releases_spooled_layers() -> None:
    image = generate_image(1024, 2)
    image.close()

    assert all(layer._file.closed for layer in image.layers)


@pytest.mark.parametrize("size_bytes,layer_count", [(1024, 0), (-1, 1)])
def test_invalid_shapes_are_rejected(size_bytes: int, layer_count: int) -> None:
    with pytest.raises(ImageGenerationError):
        generate_image(size_bytes, layer_count)

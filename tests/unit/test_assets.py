from __future__ import annotations

import pytest

from dreamcut.assets import normalize_assets
from dreamcut.errors import ValidationError
from dreamcut.schemas import MediaAsset


def test_caller_ids_are_kept_and_missing_ids_are_stable() -> None:
    refs = [
        {"id": "logo", "url": "https://cdn.example.com/logo.png", "mediaType": "image"},
        {"url": "https://cdn.example.com/clip.mp4", "mediaType": "video"},
    ]
    first = normalize_assets(refs)
    second = normalize_assets(refs)
    assert first[0].id == "logo"
    assert first[1].id.startswith("video-")
    assert first[1].id == second[1].id


def test_media_kind_inferred_from_aliases_and_extension() -> None:
    assets = normalize_assets(
        [
            {"url": "https://cdn.example.com/photo", "mediaType": "photo"},
            {"url": "https://cdn.example.com/voice.mp3"},
            {"url": "s3://bucket/brief.pdf"},
        ]
    )
    assert [asset.media_type for asset in assets] == ["image", "audio", "document"]


def test_same_url_without_ids_gets_distinct_ids() -> None:
    assets = normalize_assets(
        [
            {"url": "https://cdn.example.com/a.png", "mediaType": "image"},
            {"url": "https://cdn.example.com/a.png", "mediaType": "image"},
        ]
    )
    assert assets[0].id != assets[1].id
    assert assets[1].id.endswith("-2")


def test_metadata_and_description_survive_normalization() -> None:
    [asset] = normalize_assets(
        [
            {
                "id": "a1",
                "url": "https://cdn.example.com/a.png",
                "mediaType": "image",
                "metadata": {"description": "blue logo on white background", "width": 800, "height": 600},
            }
        ]
    )
    assert asset.description == "blue logo on white background"
    assert asset.metadata.width == 800


def test_every_problem_is_reported_at_once() -> None:
    with pytest.raises(ValidationError) as excinfo:
        normalize_assets(
            [
                {"url": "", "mediaType": "image"},
                {"url": "https://cdn.example.com/a.bin", "mediaType": "hologram"},
                {"url": "ftp://old.example.com/a.png", "mediaType": "image"},
                {"id": "dup", "url": "https://cdn.example.com/1.png", "mediaType": "image"},
                {"id": "dup", "url": "https://cdn.example.com/2.png", "mediaType": "image"},
                "not-a-mapping",
            ]
        )
    fields = [issue.field for issue in excinfo.value.issues]
    assert fields == [
        "assets[0].url",
        "assets[1].mediaType",
        "assets[2].url",
        "assets[4].id",
        "assets[5]",
    ]


def test_invalid_metadata_is_field_qualified() -> None:
    with pytest.raises(ValidationError) as excinfo:
        normalize_assets([{"url": "https://cdn.example.com/a.png", "mediaType": "image", "metadata": {"width": -3}}])
    assert excinfo.value.issues[0].field == "assets[0].metadata.width"


def test_existing_media_assets_pass_through() -> None:
    original = MediaAsset(id="a1", url="/srv/media/a.png", media_type="image")
    [asset] = normalize_assets([original])
    assert asset == original


@pytest.mark.parametrize("key", ["userDescription", "description"])
def test_top_level_description_is_kept(key: str) -> None:
    [asset] = normalize_assets(
        [{"id": "a1", "url": "https://cdn.example.com/a.png", "mediaType": "image", key: "blue logo on white background"}]
    )
    assert asset.description == "blue logo on white background"
    assert asset.metadata.description == "blue logo on white background"


def test_metadata_description_wins_over_top_level() -> None:
    [asset] = normalize_assets(
        [
            {
                "url": "https://cdn.example.com/a.png",
                "mediaType": "image",
                "userDescription": "outer",
                "metadata": {"description": "inner", "width": 640},
            }
        ]
    )
    assert asset.description == "inner"
    assert asset.metadata.width == 640

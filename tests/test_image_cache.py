import asyncio

import httpx

from app.models.entity_models import EntityRecord, EntityType
from app.sync.image_cache import extension_for, warm_image_cache


def _ad(ad_id, url):
    return EntityRecord(entity_type=EntityType.AD, entity_id=ad_id, creative_thumbnail=url)


def test_extension_for():
    assert extension_for("image/png") == "png"
    assert extension_for("image/webp; charset=binary") == "webp"
    assert extension_for("image/jpeg") == "jpg"
    assert extension_for("") == "jpg"


def test_warm_image_cache_downloads_and_skips_failures(tmp_path, sleep):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ok.png":
            return httpx.Response(200, content=b"PNG", headers={"content-type": "image/png"})
        return httpx.Response(403)

    ads = [
        _ad("a1", "https://cdn.example/ok.png"),
        _ad("a2", "https://cdn.example/expired.jpg"),
        _ad("a3", None),
    ]
    result = asyncio.run(
        warm_image_cache(
            "p1",
            ads,
            transport=httpx.MockTransport(handler),
            sleep=sleep,
            cache_dir=str(tmp_path),
            url_prefix="/media/creatives/",
        )
    )

    assert result.total == 2
    assert result.failed == 1
    assert result.cached == {"a1": "/media/creatives/p1/a1.png"}
    assert (tmp_path / "p1" / "a1.png").read_bytes() == b"PNG"


def test_warm_image_cache_without_images(tmp_path, sleep):
    result = asyncio.run(warm_image_cache("p1", [_ad("a1", None)], sleep=sleep, cache_dir=str(tmp_path)))
    assert result.total == 0
    assert not (tmp_path / "p1").exists()

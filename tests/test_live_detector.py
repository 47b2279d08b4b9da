import asyncio

import httpx

from tubewatch.monitor.models import ItemType
from tubewatch.youtube.live_detector import LiveDetector, live_url, resolve_owned_video_id

from conftest import CHANNEL_ID, OTHER_CHANNEL_ID

OWN = "OWNVIDEO001"
PROMO = "OTHERVIDEO1"


def test_pairing_skips_cross_promoted_broadcasts():
    page = (
        f'{{"videoId":"{PROMO}","channelId":"{OTHER_CHANNEL_ID}"}},'
        f'{{"videoId":"{OWN}","isLive":true,"channelId":"{CHANNEL_ID}"}}'
    )
    assert resolve_owned_video_id(page, CHANNEL_ID) == OWN


def test_pairing_channel_before_video():
    page = f'{{"channelId":"{CHANNEL_ID}","videoId":"{OWN}"}}'
    assert resolve_owned_video_id(page, CHANNEL_ID) == OWN


def test_pairing_does_not_cross_objects():
    # the promo's id is never paired with our channel id across a closing brace
    page = f'{{"videoId":"{PROMO}"}},{{"channelId":"{CHANNEL_ID}","videoId":"{OWN}"}}'
    assert resolve_owned_video_id(page, CHANNEL_ID) == OWN


def test_proximity_prefers_nearest_preceding_id():
    page = f'{{"videoId":"{PROMO}"}},{{"videoId":"{OWN}"}},{{"owner":{{"channelId":"{CHANNEL_ID}"}}}}'
    assert resolve_owned_video_id(page, CHANNEL_ID) == OWN


def test_proximity_falls_back_to_following_id():
    page = f'{{"owner":{{"channelId":"{CHANNEL_ID}"}}}},{{"videoId":"{OWN}"}}'
    assert resolve_owned_video_id(page, CHANNEL_ID) == OWN


def test_unowned_page_resolves_nothing():
    page = f'{{"videoId":"{PROMO}","channelId":"{OTHER_CHANNEL_ID}"}}'
    assert resolve_owned_video_id(page, CHANNEL_ID) is None


LIVE_PAGE = (
    '<meta name="title" content="Morning &amp; chill">'
    f'{{"videoDetails":{{"videoId":"{OWN}","channelId":"{CHANNEL_ID}","isLive":true}}}}'
)


def _detector(make_client, status=200, text=LIVE_PAGE):
    requested = []

    def handler(request):
        requested.append(str(request.url))
        return httpx.Response(status, text=text)

    return LiveDetector(make_client(handler)), requested


def test_probe_returns_live_item(make_client):
    detector, requested = _detector(make_client)
    item = asyncio.run(detector.probe(CHANNEL_ID))

    assert requested == [live_url(CHANNEL_ID)]
    assert item.video_id == OWN
    assert item.channel_id == CHANNEL_ID
    assert item.type is ItemType.LIVE
    assert item.is_live_now
    assert item.title == "Morning & chill"
    assert item.thumbnail_url.endswith(f"/{OWN}/maxresdefault.jpg")


def test_probe_idle_channel(make_client):
    detector, _ = _detector(make_client, text=f'{{"videoId":"{OWN}","channelId":"{CHANNEL_ID}"}}')
    assert asyncio.run(detector.probe(CHANNEL_ID)) is None


def test_probe_live_flag_for_other_channel(make_client):
    page = f'{{"videoId":"{PROMO}","channelId":"{OTHER_CHANNEL_ID}","isLiveNow":true}}'
    detector, _ = _detector(make_client, text=page)
    assert asyncio.run(detector.probe(CHANNEL_ID)) is None


def test_probe_missing_live_page(make_client):
    detector, _ = _detector(make_client, status=404)
    assert asyncio.run(detector.probe(CHANNEL_ID)) is None

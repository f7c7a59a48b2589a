from pathlib import Path

import pytest

from deckshow.services.urls import storage_public_url, to_public_url


def test_to_public_url_strips_storage_root():
    url = to_public_url(
        "/srv/storage/presentations/Acme/20240101_000000/slide-001.png",
        "/srv/storage",
        "http://localhost:8000",
    )

    assert url == "http://localhost:8000/presentations/Acme/20240101_000000/slide-001.png"


def test_to_public_url_normalizes_backslashes_and_slashes():
    url = to_public_url(
        "C:\\data\\storage\\presentations\\Acme\\set\\slide-002.png",
        "C:\\data\\storage\\",
        "https://slides.example.org/",
    )

    assert url == "https://slides.example.org/presentations/Acme/set/slide-002.png"


def test_to_public_url_keeps_origin_path_prefix():
    url = to_public_url("/srv/storage/presentations/a.png", "/srv/storage", "http://host/proxy")

    assert url == "http://host/proxy/presentations/a.png"


def test_to_public_url_rejects_paths_outside_root():
    with pytest.raises(ValueError):
        to_public_url("/srv/storage-other/x.png", "/srv/storage", "http://host")


def test_storage_public_url_resolves_paths(tmp_path: Path):
    storage_root = tmp_path / "storage"
    target = storage_root / "presentations" / "Deck" / ".." / "Deck" / "slide-001.png"

    url = storage_public_url(target, storage_root, "http://testserver")

    assert url == "http://testserver/presentations/Deck/slide-001.png"

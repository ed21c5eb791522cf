import pytest

import blob_store
from blob_store import GcsBlobStore, sanitize_name
from errors import StoreIOError


@pytest.mark.parametrize("raw, expected", [
    ("Mon Fichier (1).CSV", "mon_fichier_1.csv"),
    ("  médecins   2024.xlsx ", "mdecins_2024.xlsx"),
    ("../../etc/passwd", "....etcpasswd"),
    ("", "fichier"),
])
def test_sanitize_name(raw: str, expected: str) -> None:
    assert sanitize_name(raw) == expected


def test_save_uploads_under_owner_prefix(gcs_client, ms_clock) -> None:
    store = GcsBlobStore("uploads", client=gcs_client, clock_ms=ms_clock)

    path = store.save("User 42", "Médecins Paris.csv", b"Nom\nDupont\n")

    assert path == "user_42/mdecins_paris.csv-1700000000000"
    data, content_type = gcs_client.buckets["uploads"].objects[path]
    assert data == b"Nom\nDupont\n"
    assert content_type == "text/csv"


def test_save_never_overwrites(gcs_client) -> None:
    store = GcsBlobStore("uploads", client=gcs_client, clock_ms=lambda: 1)
    store.save("u1", "a.csv", b"first")
    with pytest.raises(StoreIOError):
        store.save("u1", "a.csv", b"second")
    assert gcs_client.buckets["uploads"].objects["u1/a.csv-1"][0] == b"first"


def test_signed_url_needs_signing_account(gcs_client, monkeypatch) -> None:
    monkeypatch.setattr(blob_store, "SIGNING_SA_EMAIL", "")
    store = GcsBlobStore("uploads", client=gcs_client)
    with pytest.raises(StoreIOError):
        store.signed_url("u1/a.csv-1")

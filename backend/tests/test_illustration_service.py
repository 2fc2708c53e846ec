"""
Tests for recognising illustration requests.
"""

import json

from lisa.services.illustration_service import IllustrationCatalog, load_metadata


def test_train_part_by_name(catalog):
    attachment = catalog.resolve("Can I see the event recorder?")

    assert attachment.name == "event recorder"
    assert attachment.display_name == "Event recorder"
    assert attachment.type == "trainPart"
    assert attachment.image_url.endswith("/api/train/image/SD60M%20QUANTUM%20EVENT%20RECORDER.jpg")


def test_longer_part_name_wins(catalog):
    assert catalog.resolve("show me the relay panel right wall").name == "relay panel right wall"


def test_part_needs_request_phrase(catalog):
    assert catalog.resolve("the alerter keeps going off") is None


def test_metadata_overrides_display_name(tmp_path):
    path = tmp_path / "metadata.json"
    path.write_text(json.dumps({"alerter": {"displayName": "Alerter Q2518"}}))

    catalog = IllustrationCatalog("http://backend/", load_metadata(str(path)))
    attachment = catalog.resolve("show me the alerter")

    assert attachment.display_name == "Alerter Q2518"
    assert attachment.image_url.startswith("http://backend/api/train/image/")


def test_unreadable_metadata_is_ignored(tmp_path):
    path = tmp_path / "metadata.json"
    path.write_text("{oops")

    assert load_metadata(str(path)) == {}
    assert load_metadata(str(tmp_path / "missing.json")) == {}
    assert load_metadata(None) == {}


def test_sd60_schematic_page(catalog):
    attachment = catalog.resolve("show me schematic page 13")

    assert attachment.type == "schematic"
    assert attachment.name == "schematic_page_13"
    assert attachment.filename == "WD03463 SD-60 PAGE 13.png"
    assert "/api/schematic/image/" in attachment.image_url


def test_sd60_unknown_page(catalog):
    assert catalog.resolve("show me schematic page 49") is None


def test_ietms_page(catalog):
    attachment = catalog.resolve("show me the ietms schematic page 5")

    assert attachment.type == "ietms"
    assert attachment.name == "ietms_page_5"
    assert "/api/ietms/image/" in attachment.image_url


def test_ietms_defaults_to_first_page(catalog):
    attachment = catalog.resolve("show ietms schematic")

    assert attachment.name == "ietms_page_2"
    assert "first page" in attachment.description


def test_plain_question(catalog):
    assert catalog.resolve("How do I reset the breaker?") is None

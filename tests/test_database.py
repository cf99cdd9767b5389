"""Tests for the cached set listing."""
from hanzi_flashcards import database
from hanzi_flashcards.app import create_app
from hanzi_flashcards.database import SetListingCache, list_character_sets
from hanzi_flashcards.ingestion import import_character_file
from hanzi_flashcards.models import db


def _import(resolver, text, filename):
    return import_character_file(
        text.encode("utf-8"),
        filename,
        resolver,
        on_imported=database.invalidate_set_listing_cache,
    )


def _names(listing):
    return [row["name"] for row in listing]


def test_store_is_refused_after_invalidation():
    cache = SetListingCache()
    rows, generation = cache.lookup()
    assert rows is None
    cache.invalidate()
    assert cache.store([{"id": 1}], generation) is False
    assert cache.lookup()[0] is None

    _, generation = cache.lookup()
    assert cache.store([{"id": 1}], generation) is True
    assert cache.lookup()[0] == [{"id": 1}]


def test_listing_is_served_from_cache_until_invalidated(app, resolver):
    _import(resolver, "你好", "first.txt")
    assert _names(list_character_sets()) == ["first"]
    # A write that skips invalidation is not visible yet.
    import_character_file("世界".encode("utf-8"), "quiet.txt", resolver)
    assert _names(list_character_sets()) == ["first"]
    database.invalidate_set_listing_cache()
    assert _names(list_character_sets()) == ["quiet", "first"]


def test_listing_read_before_a_concurrent_import_is_not_cached(app, resolver, monkeypatch):
    _import(resolver, "你好", "first.txt")
    cache = app.extensions["set_listing_cache"]
    original_store = cache.store

    def import_then_store(rows, generation):
        # Another request commits an import after this reader's query ran.
        monkeypatch.setattr(cache, "store", original_store)
        _import(resolver, "世界", "second.txt")
        return original_store(rows, generation)

    monkeypatch.setattr(cache, "store", import_then_store)
    assert _names(list_character_sets()) == ["first"]
    assert _names(list_character_sets()) == ["second", "first"]


def test_each_app_has_its_own_listing_cache(app, resolver, tmp_path):
    _import(resolver, "你好", "first.txt")
    assert _names(list_character_sets()) == ["first"]

    other = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "LOGS_DIR": tmp_path / "other-logs",
        },
        pinyin_backend=lambda character: [],
    )
    assert other.extensions["set_listing_cache"] is not app.extensions["set_listing_cache"]
    with other.app_context():
        assert list_character_sets() == []
        db.session.remove()

    assert _names(list_character_sets()) == ["first"]

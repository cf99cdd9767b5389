"""Tests for importing character files into sets."""
import pytest
from sqlalchemy.exc import OperationalError

from hanzi_flashcards import ingestion
from hanzi_flashcards.errors import ConflictError, ImportFailed, ImportSucceeded, ValidationError
from hanzi_flashcards.ingestion import (
    base_name_from_filename,
    create_character_set,
    import_character_file,
)
from hanzi_flashcards.models import CharacterSet, Character, LearnedCharacter, db


def _import(resolver, text, filename="demo.txt", encoding="utf-8", **kwargs):
    return import_character_file(text.encode(encoding), filename, resolver, **kwargs)


def test_import_dedupes_characters(app, resolver):
    result = _import(resolver, "你\n好\n你\n")
    assert isinstance(result, ImportSucceeded)
    assert result.character_count == 2
    character_set = db.session.get(CharacterSet, result.set_id)
    assert [c.char for c in character_set.characters] == ["你", "好"]


def test_import_stores_resolved_pinyin(app, resolver):
    result = _import(resolver, "你好龘")
    character_set = db.session.get(CharacterSet, result.set_id)
    pinyin = {c.char: c.pinyin for c in character_set.characters}
    assert pinyin["你"] == ["nǐ"]
    # 好 comes from the bundled override table.
    assert pinyin["好"] == ["hǎo", "hào"]
    # Unresolvable characters are kept with empty pinyin.
    assert pinyin["龘"] == []


def test_import_names_are_made_unique(app, resolver):
    names = [_import(resolver, "你好").set_name for _ in range(3)]
    assert names == ["demo", "demo (2)", "demo (3)"]


@pytest.mark.parametrize("filename,expected", [
    ("demo.txt", "demo"),
    ("my.list.txt", "my.list"),
    ("常用字.txt", "常用字"),
    ("noextension", "新字库"),
    (".txt", "新字库"),
    ("", "新字库"),
])
def test_base_name_from_filename(filename, expected):
    assert base_name_from_filename(filename) == expected


def test_import_description_mentions_file_and_count(app, resolver):
    result = _import(resolver, "你好世界", filename="常用字.txt")
    character_set = db.session.get(CharacterSet, result.set_id)
    assert character_set.description == '从文件 "常用字.txt" 导入，包含 4 个汉字。'


def test_new_import_becomes_the_only_default(app, resolver):
    first = _import(resolver, "你好")
    second = _import(resolver, "世界")
    defaults = CharacterSet.query.filter_by(is_default=True).all()
    assert [s.id for s in defaults] == [second.set_id]
    assert db.session.get(CharacterSet, first.set_id).is_default is False


def test_gbk_file_is_imported(app, resolver):
    result = _import(resolver, "学\r\n习\r\n", filename="legacy.txt", encoding="gbk")
    assert isinstance(result, ImportSucceeded)
    character_set = db.session.get(CharacterSet, result.set_id)
    assert [c.char for c in character_set.characters] == ["学", "习"]


def test_mojibake_filename_is_repaired_before_naming(app, resolver):
    mangled = "常用字.txt".encode("utf-8").decode("latin-1")
    result = import_character_file("你好".encode("utf-8"), mangled, resolver)
    assert result.set_name == "常用字"


def test_missing_file_fails(app, resolver):
    for raw in (None, b""):
        result = import_character_file(raw, "demo.txt", resolver)
        assert isinstance(result, ImportFailed)
        assert result.reason == "no_file"
        assert isinstance(result.error, ValidationError)
    assert CharacterSet.query.count() == 0


def test_file_without_chinese_fails(app, resolver):
    result = _import(resolver, "hello world 123")
    assert isinstance(result, ImportFailed)
    assert result.reason == "no_valid_characters"
    assert CharacterSet.query.count() == 0


def test_undecodable_file_fails(app, resolver):
    result = import_character_file(b"\xff\xfe\xff", "broken.txt", resolver)
    assert isinstance(result, ImportFailed)
    assert result.reason == "undecodable_encoding"


def test_name_race_reports_duplicate_and_rolls_back(app, resolver, monkeypatch):
    first = _import(resolver, "你好")
    # Simulate another request taking the name between the probe and the insert.
    monkeypatch.setattr(ingestion, "unique_set_name", lambda base: "demo")
    result = _import(resolver, "世界")
    assert isinstance(result, ImportFailed)
    assert result.reason == "duplicate_name"
    assert isinstance(result.error, ConflictError)
    assert CharacterSet.query.count() == 1
    assert Character.query.count() == 2
    assert db.session.get(CharacterSet, first.set_id).is_default is True


def test_storage_failure_is_wrapped(app, resolver, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("INSERT INTO characters", {}, Exception("database is down"))

    monkeypatch.setattr(ingestion, "_build_characters", broken)
    result = _import(resolver, "你好")
    assert isinstance(result, ImportFailed)
    assert result.reason == "persistence_error"
    assert "database is down" in result.error.detail
    assert "database is down" not in result.message
    assert CharacterSet.query.count() == 0


def test_on_imported_runs_once_on_success_only(app, resolver):
    calls = []
    _import(resolver, "你好", on_imported=lambda: calls.append(1))
    _import(resolver, "abc", on_imported=lambda: calls.append(1))
    assert calls == [1]


def test_failing_hook_does_not_fail_import(app, resolver):
    def hook():
        raise RuntimeError("cache offline")

    result = _import(resolver, "你好", on_imported=hook)
    assert isinstance(result, ImportSucceeded)


def test_deleting_set_cascades_but_keeps_learned(app, resolver):
    result = _import(resolver, "你好")
    db.session.add(LearnedCharacter(char="你"))
    db.session.commit()
    db.session.delete(db.session.get(CharacterSet, result.set_id))
    db.session.commit()
    assert Character.query.count() == 0
    assert LearnedCharacter.query.filter_by(char="你").count() == 1


def test_create_character_set_from_list(app, resolver):
    character_set = create_character_set("手动", ["你", "好", "你", "a", "好好"], resolver, description="测试")
    assert [c.char for c in character_set.characters] == ["你", "好"]
    assert character_set.description == "测试"
    assert character_set.is_default is False


def test_create_character_set_duplicate_name(app, resolver):
    create_character_set("手动", ["你"], resolver)
    with pytest.raises(ConflictError) as excinfo:
        create_character_set("手动", ["好"], resolver)
    assert "手动" in excinfo.value.message
    assert CharacterSet.query.count() == 1


@pytest.mark.parametrize("name,characters", [
    ("", ["你"]),
    ("   ", ["你"]),
    ("手动", []),
    ("手动", ["a", "b"]),
    ("手动", "你好"),
])
def test_create_character_set_validation(app, resolver, name, characters):
    with pytest.raises(ValidationError):
        create_character_set(name, characters, resolver)


def test_gbk_file_cut_off_mid_character_is_imported(app, resolver):
    # Last character lost its second byte.
    raw = "学习世界".encode("gbk")[:-1]
    result = import_character_file(raw, "legacy.txt", resolver)
    assert isinstance(result, ImportSucceeded)
    character_set = db.session.get(CharacterSet, result.set_id)
    assert [c.char for c in character_set.characters] == ["学", "习", "世"]

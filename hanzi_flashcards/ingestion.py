"""
Character-set import.

import_character_file() turns an uploaded file into a new default CharacterSet:
decode (UTF-8 / GBK) -> unique CJK characters -> unique set name -> one
transaction (clear default, create set, pinyin per character, bulk insert).
"""
import logging
from pathlib import PurePath
from typing import Callable, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .database import find_character_set_by_name, unit_of_work
from .encoding import decode_upload, extract_characters, is_cjk_character
from .errors import (
    ConflictError,
    ImportFailed,
    ImportResult,
    ImportSucceeded,
    PersistenceError,
    ValidationError,
)
from .models import CharacterSet, Character
from .pinyin_resolver import PinyinResolver

logger = logging.getLogger(__name__)

DEFAULT_SET_NAME = "新字库"

NO_FILE_MESSAGE = '请选择一个文件上传。'
NO_VALID_CHARACTERS_MESSAGE = '文件中未找到有效汉字。请确保每行一个汉字。'
DUPLICATE_IMPORT_MESSAGE = '导入失败，可能存在重复数据。请检查文件内容。'
PERSISTENCE_MESSAGE = '数据库错误，导入字库失败。'


def base_name_from_filename(filename: str) -> str:
    """Filename without its final extension; falls back to a generic name."""
    name = PurePath(filename or "").name
    stem = name.rsplit('.', 1)[0] if '.' in name else ''
    stem = stem.strip()
    return stem or DEFAULT_SET_NAME


def unique_set_name(base_name: str) -> str:
    """base_name, or 'base_name (2)', 'base_name (3)', ... whichever is free first."""
    name = base_name
    counter = 2
    while find_character_set_by_name(name) is not None:
        name = f"{base_name} ({counter})"
        counter += 1
    return name


def _build_characters(character_set: CharacterSet, chars: Iterable[str], resolver: PinyinResolver) -> List[Character]:
    return [
        Character(char=ch, pinyin=resolver.resolve(ch), character_set=character_set)
        for ch in chars
    ]


def import_character_file(
    raw: Optional[bytes],
    filename: str,
    resolver: PinyinResolver,
    on_imported: Optional[Callable[[], None]] = None,
) -> ImportResult:
    """Import an uploaded character list. Expected failures come back as ImportFailed."""
    if not raw:
        return ImportFailed(ValidationError(NO_FILE_MESSAGE, code="no_file"))

    decoded, decode_error = decode_upload(raw, filename)
    if decode_error is not None:
        return ImportFailed(decode_error)

    characters = extract_characters(decoded.text)
    if not characters:
        return ImportFailed(ValidationError(NO_VALID_CHARACTERS_MESSAGE, code="no_valid_characters"))

    set_name = unique_set_name(base_name_from_filename(decoded.filename))
    description = f'从文件 "{decoded.filename}" 导入，包含 {len(characters)} 个汉字。'

    try:
        with unit_of_work() as session:
            CharacterSet.query.filter_by(is_default=True).update(
                {CharacterSet.is_default: False}, synchronize_session=False
            )
            character_set = CharacterSet(name=set_name, description=description, is_default=True)
            session.add(character_set)
            session.add_all(_build_characters(character_set, characters, resolver))
    except IntegrityError as e:
        logger.warning("Import of %r hit a uniqueness conflict: %s", set_name, e)
        return ImportFailed(ConflictError(DUPLICATE_IMPORT_MESSAGE, detail=str(e.orig)))
    except SQLAlchemyError as e:
        logger.exception("Import of %r failed in the database", set_name)
        return ImportFailed(PersistenceError(PERSISTENCE_MESSAGE, detail=str(e)))

    if on_imported is not None:
        try:
            on_imported()
        except Exception as e:
            logger.warning("Post-import hook failed: %s", e)

    logger.info(
        "Imported set %s (%r): %d characters, %s", character_set.id, set_name, len(characters), decoded.encoding
    )
    return ImportSucceeded(set_id=character_set.id, set_name=character_set.name, character_count=len(characters))


def create_character_set(
    name: str,
    characters: Iterable[str],
    resolver: PinyinResolver,
    description: Optional[str] = None,
) -> CharacterSet:
    """
    Create a set from an explicit list of characters (JSON API).

    Raises ValidationError for an empty name or no valid characters, and
    ConflictError if the name is taken.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError('字库名称和汉字列表不能为空', code="empty_name")
    if isinstance(characters, str):
        raise ValidationError('characters 必须是数组')
    unique_chars = list(dict.fromkeys(ch for ch in (characters or []) if is_cjk_character(ch)))
    if not unique_chars:
        raise ValidationError('字库名称和汉字列表不能为空', code="no_valid_characters")

    try:
        with unit_of_work() as session:
            character_set = CharacterSet(name=name, description=description or None, is_default=False)
            session.add(character_set)
            session.add_all(_build_characters(character_set, unique_chars, resolver))
    except IntegrityError as e:
        raise ConflictError(f'已存在名为 "{name}" 的字库，请使用其他名称。', detail=str(e.orig)) from e
    except SQLAlchemyError as e:
        raise PersistenceError('创建字库时发生服务器内部错误', detail=str(e)) from e
    return character_set

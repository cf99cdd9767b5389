"""Database connection, unit of work, and CRUD for character sets and learned marks."""
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from flask import Flask, current_app
from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError

from .models import db, CharacterSet, Character, LearnedCharacter

logger = logging.getLogger(__name__)


class SetListingCache:
    """
    Cached result of list_character_sets(), one per app; cleared after imports
    and deletes.

    Every invalidation bumps the generation. A reader stores its rows only if
    the generation it saw before querying is still current, so a listing read
    before a concurrent import commits is never cached after it.
    """

    def __init__(self):
        self._rows: Optional[List[Dict[str, Any]]] = None
        self._generation = 0
        self._lock = threading.Lock()

    def lookup(self) -> Tuple[Optional[List[Dict[str, Any]]], int]:
        with self._lock:
            return self._rows, self._generation

    def store(self, rows: List[Dict[str, Any]], generation: int) -> bool:
        with self._lock:
            if generation != self._generation:
                return False
            self._rows = rows
            return True

    def invalidate(self):
        with self._lock:
            self._rows = None
            self._generation += 1


def _listing_cache() -> SetListingCache:
    return current_app.extensions['set_listing_cache']


def init_db(app: Flask):
    """Initialize database connection and create tables."""
    database_url = app.config['SQLALCHEMY_DATABASE_URI']
    if database_url.startswith('postgresql'):
        app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', {
            'pool_size': 5,
            'max_overflow': 2,
            'pool_timeout': 30,
            'pool_recycle': 1800,
        })

    db.init_app(app)
    app.extensions['set_listing_cache'] = SetListingCache()

    with app.app_context():
        db.create_all()

    return db


@contextmanager
def unit_of_work():
    """Commit everything done inside the block, or roll all of it back."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def invalidate_set_listing_cache():
    _listing_cache().invalidate()


def list_character_sets() -> List[Dict[str, Any]]:
    """All sets with their character counts, newest first."""
    cache = _listing_cache()
    cached, generation = cache.lookup()
    if cached is not None:
        return [dict(row) for row in cached]

    rows = (
        db.session.query(
            CharacterSet.id,
            CharacterSet.name,
            CharacterSet.is_default,
            CharacterSet.created_at,
            func.count(Character.id),
        )
        .outerjoin(Character, Character.character_set_id == CharacterSet.id)
        .group_by(CharacterSet.id, CharacterSet.name, CharacterSet.is_default, CharacterSet.created_at)
        .order_by(CharacterSet.created_at.desc(), CharacterSet.id.desc())
        .all()
    )
    listing = [
        {
            'id': set_id,
            'name': name,
            'isDefault': bool(is_default),
            'characterCount': count,
        }
        for set_id, name, is_default, _created_at, count in rows
    ]
    cache.store(listing, generation)
    return [dict(row) for row in listing]


def get_character_set(set_id: int) -> Optional[CharacterSet]:
    """One set; its characters are ordered by creation time ascending."""
    return db.session.get(CharacterSet, set_id)


def find_character_set_by_name(name: str) -> Optional[CharacterSet]:
    return CharacterSet.query.filter_by(name=name).first()


def get_default_character_set() -> Optional[CharacterSet]:
    """The default set, else the newest one, else None."""
    default = CharacterSet.query.filter_by(is_default=True).first()
    if default is not None:
        return default
    return CharacterSet.query.order_by(CharacterSet.created_at.desc(), CharacterSet.id.desc()).first()


def delete_character_set(set_id: int) -> bool:
    """Delete a set and its characters. Returns False if it did not exist."""
    character_set = db.session.get(CharacterSet, set_id)
    if character_set is None:
        return False
    with unit_of_work() as session:
        session.delete(character_set)
    invalidate_set_listing_cache()
    return True


def update_character_pinyin(char_id: int, pinyin: List[str]) -> Optional[Character]:
    character = db.session.get(Character, char_id)
    if character is None:
        return None
    with unit_of_work():
        character.pinyin = list(pinyin)
    return character


def is_learned(char: str) -> bool:
    return LearnedCharacter.query.filter_by(char=char).first() is not None


def mark_learned(char: str) -> LearnedCharacter:
    """Upsert a learned mark; marking twice is a no-op."""
    existing = LearnedCharacter.query.filter_by(char=char).first()
    if existing is not None:
        return existing
    try:
        with unit_of_work() as session:
            entry = LearnedCharacter(char=char)
            session.add(entry)
        return entry
    except IntegrityError:
        # Lost a race with a concurrent mark of the same glyph.
        return LearnedCharacter.query.filter_by(char=char).one()


def unmark_learned(char: str) -> bool:
    """Remove a learned mark. Returns False if there was none."""
    with unit_of_work():
        deleted = LearnedCharacter.query.filter_by(char=char).delete()
    return deleted > 0


def get_learned_characters() -> List[LearnedCharacter]:
    return LearnedCharacter.query.order_by(LearnedCharacter.created_at.asc(), LearnedCharacter.id.asc()).all()


def export_learned_text() -> str:
    """Learned glyphs joined by newlines, oldest first."""
    return "\n".join(entry.char for entry in get_learned_characters())


def ping() -> bool:
    """True if the database answers a trivial query."""
    try:
        db.session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database ping failed: %s", e)
        db.session.rollback()
        return False

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text

db = SQLAlchemy()


def _utcnow() -> datetime:
    # Stored as naive UTC; serialized with an explicit "Z" by _to_utc_iso_z.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_utc_iso_z(dt: datetime | None) -> str | None:
    """
    Serialize datetimes as ISO-8601 with an explicit UTC timezone ("Z").

    We store datetimes as naive UTC in the DB. Without a timezone
    suffix, browsers often interpret the string as local time.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


class CharacterSet(db.Model):
    """A named, user-imported list of characters (字库)."""
    __tablename__ = "character_sets"
    __table_args__ = (
        # At most one default set at a time.
        db.Index(
            "uq_character_sets_single_default",
            "is_default",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    characters = db.relationship(
        "Character",
        back_populates="character_set",
        cascade="all, delete-orphan",
        order_by=lambda: (Character.created_at, Character.id),
    )

    def to_dict(self, include_characters: bool = True):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'isDefault': self.is_default,
            'createdAt': _to_utc_iso_z(self.created_at),
            'updatedAt': _to_utc_iso_z(self.updated_at),
        }
        if include_characters:
            data['characters'] = [c.to_dict() for c in self.characters]
        return data

    def __repr__(self):
        return f'<CharacterSet {self.id}: {self.name}>'


class Character(db.Model):
    __tablename__ = "characters"
    __table_args__ = (
        db.UniqueConstraint("character_set_id", "char", name="uq_characters_set_char"),
    )

    id = db.Column(db.Integer, primary_key=True)
    char = db.Column(db.String(1), nullable=False)
    # Ordered syllables with tone marks, e.g. ["háng", "xíng"]; empty if unresolved.
    pinyin = db.Column(db.JSON, nullable=False, default=list)
    character_set_id = db.Column(
        db.Integer,
        db.ForeignKey("character_sets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)

    character_set = db.relationship("CharacterSet", back_populates="characters")

    def to_dict(self):
        return {
            'id': self.id,
            'char': self.char,
            'pinyin': list(self.pinyin or []),
            'characterSetId': self.character_set_id,
            'createdAt': _to_utc_iso_z(self.created_at),
        }

    def __repr__(self):
        return f'<Character {self.id}: {self.char}>'


class LearnedCharacter(db.Model):
    """Learned mark for a glyph. Not tied to any set."""
    __tablename__ = "learned_characters"

    id = db.Column(db.Integer, primary_key=True)
    char = db.Column(db.String(1), nullable=False, unique=True)
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'char': self.char,
            'createdAt': _to_utc_iso_z(self.created_at),
        }

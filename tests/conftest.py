import pytest

from hanzi_flashcards.app import create_app
from hanzi_flashcards.models import db

# Stand-in for pypinyin so tests don't depend on its dictionary version.
FAKE_READINGS = {
    "你": ["nǐ"],
    "我": ["wǒ"],
    "他": ["tā"],
    "学": ["xué"],
    "习": ["xí"],
    "世": ["shì"],
    "界": ["jiè"],
    "人": ["rén"],
}


def fake_romanize(character):
    # Unknown characters come back untranslated, like pypinyin does.
    return list(FAKE_READINGS.get(character, [character]))


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite://',
            'LOGS_DIR': tmp_path / 'logs',
            'REVIEW_SEED': 'tests',
            'EXPOSE_ERROR_DETAILS': True,
        },
        pinyin_backend=fake_romanize,
    )
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def resolver(app):
    return app.extensions['pinyin_resolver']

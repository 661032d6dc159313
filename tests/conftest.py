import os
from datetime import date

# Must be set before the app module reads its configuration
os.environ["DATABASE_URL"] = "sqlite://"

import pytest

from library_catalog import app as catalog_app, db, Author, Book


@pytest.fixture
def app():
    catalog_app.config.update(TESTING=True, WTF_CSRF_ENABLED=False)
    with catalog_app.app_context():
        db.create_all()
        yield catalog_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_author(app):
    def _make(first_name="Isaac", family_name="Asimov", date_of_birth=None, date_of_death=None):
        author = Author(first_name=first_name, family_name=family_name,
                        date_of_birth=date_of_birth, date_of_death=date_of_death)
        db.session.add(author)
        db.session.commit()
        return author
    return _make


@pytest.fixture
def make_book(app):
    def _make(author, title="Foundation", summary="The Galactic Empire is dying.", isbn="9780553293357"):
        book = Book(title=title, summary=summary, isbn=isbn, author=author)
        db.session.add(book)
        db.session.commit()
        return book
    return _make


@pytest.fixture
def asimov(make_author):
    return make_author(date_of_birth=date(1920, 1, 2), date_of_death=date(1992, 4, 6))

#!/usr/bin/env python3
"""
library_catalog.py - Author pages of the Local Library catalog (Flask + SQLite)

Features:
- Author list, detail (with the author's books), create, update and delete
- Server-side validation and sanitisation with Flask-WTF / WTForms
- CSRF protection on every form, security headers via Flask-Talisman
- SQLAlchemy ORM (parameterized queries), templates embedded in the module

Dependencies:
  pip install Flask Flask-WTF Flask-SQLAlchemy Flask-Talisman bleach python-dateutil

Run:
  flask --app library_catalog init-db --sample
  python library_catalog.py
  then open http://127.0.0.1:5000/catalog/authors
"""

import logging
import os

import bleach
import click
from dateutil.parser import isoparse
from flask import (
    Flask, render_template_string, request, redirect, url_for, flash, abort
)
from flask_sqlalchemy import SQLAlchemy
from flask_talisman import Talisman
from flask_wtf import FlaskForm, CSRFProtect
from flask_wtf.csrf import CSRFError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import load_only
from wtforms import StringField
from wtforms.validators import Length, Optional, Regexp, ValidationError

# -----------------------
# Configuration
# -----------------------
BASE_DIR = os.path.abspath(os.path.dirname(__file__))
APP_SECRET = os.environ.get("LIBRARY_SECRET") or "change-this-secret-in-production"
DATABASE_URL = os.environ.get("DATABASE_URL") or "sqlite:///" + os.path.join(BASE_DIR, "library.db")
FORCE_HTTPS = os.environ.get("LIBRARY_FORCE_HTTPS") == "1"

NAME_MAX_LENGTH = 100


def resolve_log_level(name):
    """Map a level name to a logging level name, INFO for unknown names."""
    name = (name or "").upper()
    return name if isinstance(logging.getLevelName(name), int) else "INFO"


LOG_LEVEL = resolve_log_level(os.environ.get("LIBRARY_LOG_LEVEL", "INFO"))

app = Flask(__name__)
app.config['SECRET_KEY'] = APP_SECRET
app.config['SQLALCHEMY_DATABASE_URI'] = DATABASE_URL
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

# Inline <style> in the layout needs 'unsafe-inline'
Talisman(
    app,
    force_https=FORCE_HTTPS,
    session_cookie_secure=FORCE_HTTPS,
    content_security_policy={
        'default-src': ["'self'"],
        'style-src': ["'self'", "'unsafe-inline'"],
    },
)

db = SQLAlchemy(app)
csrf = CSRFProtect(app)

logger = logging.getLogger("library_catalog")
logger.setLevel(LOG_LEVEL)


# -----------------------
# Models
# -----------------------
def format_date(value):
    """Format a date like "Jan 2, 1920"; empty string for a missing date."""
    if value is None:
        return ""
    return f"{value:%b} {value.day}, {value.year}"


class Author(db.Model):
    __tablename__ = 'authors'
    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(NAME_MAX_LENGTH), nullable=False)
    family_name = db.Column(db.String(NAME_MAX_LENGTH), nullable=False, index=True)
    date_of_birth = db.Column(db.Date, nullable=True)
    date_of_death = db.Column(db.Date, nullable=True)

    books = db.relationship('Book', back_populates='author', order_by='Book.title')

    @property
    def name(self):
        if not self.first_name or not self.family_name:
            return ""
        return f"{self.family_name}, {self.first_name}"

    @property
    def url(self):
        return url_for('author_detail', author_id=self.id)

    @property
    def lifespan(self):
        return f"{format_date(self.date_of_birth)} - {format_date(self.date_of_death)}"

    def __repr__(self):
        return f"<Author {self.id}: {self.name}>"


class Book(db.Model):
    __tablename__ = 'books'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    summary = db.Column(db.Text, nullable=False)
    isbn = db.Column(db.String(20), nullable=False)
    author_id = db.Column(db.Integer, db.ForeignKey('authors.id'), nullable=False, index=True)

    author = db.relationship('Author', back_populates='books')

    @property
    def url(self):
        # no book pages in this app, so there is no endpoint for url_for
        return f"/catalog/book/{self.id}"


# -----------------------
# Forms
# -----------------------
def strip_value(value):
    return value.strip() if isinstance(value, str) else value


def escape_value(value):
    # Escape markup instead of stripping it, so "<b>x</b>" still fails the alphanumeric check
    if not isinstance(value, str) or not value:
        return value
    return bleach.clean(value, tags=set(), strip=False)


def empty_to_none(value):
    return value or None


def parse_iso_date(value, message):
    """Parse an ISO 8601 string into a date. Raises ValidationError with `message`."""
    try:
        return isoparse(value).date()
    except (ValueError, OverflowError):
        raise ValidationError(message)


def required(message):
    # keeps the chain going: an empty name also fails the alphanumeric check
    def _required(form, field):
        if not field.data:
            raise ValidationError(message)
    return _required


def name_field(label, prefix):
    return StringField(label, filters=[strip_value, escape_value], validators=[
        required(f"{prefix} must be specified."),
        Regexp(r"^[0-9A-Za-z]+$", message=f"{prefix} has non-alphanumeric characters."),
        Length(max=NAME_MAX_LENGTH, message=f"{prefix} must be at most {NAME_MAX_LENGTH} characters."),
    ])


class AuthorForm(FlaskForm):
    first_name = name_field("First Name", "First name")
    family_name = name_field("Family Name", "Family name")
    date_of_birth = StringField("Date of birth", filters=[strip_value, empty_to_none], validators=[Optional()])
    date_of_death = StringField("Date of death", filters=[strip_value, empty_to_none], validators=[Optional()])

    def validate_date_of_birth(form, field):
        field.data = parse_iso_date(field.data, "Invalid date of birth")

    def validate_date_of_death(form, field):
        field.data = parse_iso_date(field.data, "Invalid date of death")

    def error_messages(self):
        """All field errors in field order, as listed under the form."""
        return [message for field in self for message in field.errors]

    def apply_to(self, author):
        # Update fields explicitly (avoid mass assignment)
        author.first_name = self.first_name.data
        author.family_name = self.family_name.data
        author.date_of_birth = self.date_of_birth.data
        author.date_of_death = self.date_of_death.data
        return author


# -----------------------
# Templates (embedded)
# -----------------------
LAYOUT_HTML = """
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{{ title }} - Local Library</title>
  <style>
    body { font-family: sans-serif; margin: 0; }
    nav { background: #f2f2f2; padding: 10px; margin-bottom: 20px; }
    main { padding: 0 20px; max-width: 900px; }
    .errors li, .error { color: #b00; }
    .flash { padding: 6px; background: #e8f5e9; }
    dt { font-weight: bold; }
  </style>
</head>
<body>
<nav>
  <strong>Local Library</strong> |
  <a href="{{ url_for('author_list') }}">All authors</a> |
  <a href="{{ url_for('author_create') }}">Create new author</a>
</nav>
<main>
  {% for category, message in get_flashed_messages(with_categories=true) %}
    <div class="flash flash-{{ category }}">{{ message }}</div>
  {% endfor %}
  <h1>{{ title }}</h1>
  {% block content %}{% endblock %}
</main>
</body>
</html>
"""

AUTHOR_LIST_HTML = """
{% extends layout %}
{% block content %}
  {% if author_list %}
    <ul>
    {% for author in author_list %}
      <li>
        <a href="{{ author.url }}">{{ author.name }}</a>
        ({{ author.lifespan }})
      </li>
    {% endfor %}
    </ul>
  {% else %}
    <p>There are no authors.</p>
  {% endif %}
{% endblock %}
"""

AUTHOR_BOOKS_HTML = """
<h2>Books</h2>
{% if author_books %}
  <dl>
  {% for book in author_books %}
    <dt><a href="{{ book.url }}">{{ book.title }}</a></dt>
    <dd>{{ book.summary }}</dd>
  {% endfor %}
  </dl>
{% else %}
  <p>This author has no books.</p>
{% endif %}
"""

AUTHOR_DETAIL_HTML = """
{% extends layout %}
{% block content %}
  <h2>Author: {{ author.name }}</h2>
  <p>{{ author.lifespan }}</p>
  <div>""" + AUTHOR_BOOKS_HTML + """</div>
  <hr>
  <p>
    <a href="{{ url_for('author_delete', author_id=author.id) }}">Delete author</a> |
    <a href="{{ url_for('author_update', author_id=author.id) }}">Update author</a>
  </p>
{% endblock %}
"""

AUTHOR_FORM_HTML = """
{% extends layout %}
{% block content %}
  <form method="post">
    {{ form.hidden_tag() }}
    <p>
      {{ form.first_name.label }}<br>
      {{ form.first_name(placeholder="First name", maxlength=100) }}
    </p>
    <p>
      {{ form.family_name.label }}<br>
      {{ form.family_name(placeholder="Family name", maxlength=100) }}
    </p>
    <p>
      {{ form.date_of_birth.label }}<br>
      {{ form.date_of_birth(type="date") }}
    </p>
    <p>
      {{ form.date_of_death.label }}<br>
      {{ form.date_of_death(type="date") }}
    </p>
    <button type="submit">Submit</button>
  </form>
  {% if errors %}
    <ul class="errors">
    {% for message in errors %}
      <li>{{ message }}</li>
    {% endfor %}
    </ul>
  {% endif %}
{% endblock %}
"""

AUTHOR_DELETE_HTML = """
{% extends layout %}
{% block content %}
  <h2>{{ author.name }}</h2>
  <p>{{ author.lifespan }}</p>
  {% if author_books %}
    <p><strong>Delete the following books before attempting to delete this author.</strong></p>
    <div>""" + AUTHOR_BOOKS_HTML + """</div>
  {% else %}
    <p>Do you really want to delete this Author?</p>
    <form method="post">
      <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
      <input type="hidden" name="authorid" value="{{ author.id }}">
      <button type="submit">Delete</button>
    </form>
  {% endif %}
{% endblock %}
"""

ERROR_HTML = """
{% extends layout %}
{% block content %}
  <p class="error">{{ message }}</p>
  <p><a href="{{ url_for('author_list') }}">Back to author list</a></p>
{% endblock %}
"""

LAYOUT = app.jinja_env.from_string(LAYOUT_HTML)


def render_page(template_str, **context):
    # helper to provide the shared layout
    return render_template_string(template_str, layout=LAYOUT, **context)


def get_author_books(author_id):
    return (Book.query
            .options(load_only(Book.title, Book.summary))
            .filter_by(author_id=author_id)
            .order_by(Book.title)
            .all())


# -----------------------
# Routes: Authors
# -----------------------
@app.route('/')
@app.route('/catalog')
def home():
    return redirect(url_for('author_list'))


@app.route('/catalog/authors')
def author_list():
    authors = Author.query.order_by(Author.family_name, Author.first_name, Author.id).all()
    return render_page(AUTHOR_LIST_HTML, title="Author List", author_list=authors)


@app.route('/catalog/author/<int:author_id>')
def author_detail(author_id):
    logger.debug("Get author: id=%s", author_id)
    author = db.session.get(Author, author_id)
    if author is None:
        abort(404, description="Author not found")
    author_books = get_author_books(author_id)
    return render_page(AUTHOR_DETAIL_HTML, title="Author Detail", author=author, author_books=author_books)


@app.route('/catalog/author/create', methods=['GET', 'POST'])
def author_create():
    form = AuthorForm()
    if request.method == 'POST':
        if not form.validate_on_submit():
            logger.info("Author create rejected: invalid fields %s", sorted(form.errors))
            return render_page(AUTHOR_FORM_HTML, title="Create Author", form=form,
                               errors=form.error_messages())
        author = Author()
        form.apply_to(author)
        db.session.add(author)
        db.session.commit()
        logger.info("Created author id=%s", author.id)
        return redirect(author.url)
    return render_page(AUTHOR_FORM_HTML, title="Create Author", form=form)


@app.route('/catalog/author/<int:author_id>/delete', methods=['GET', 'POST'])
def author_delete(author_id):
    if request.method == 'POST':
        # the form names the author to delete
        author_id = request.form.get('authorid', author_id, type=int)
    author = db.session.get(Author, author_id)
    author_books = get_author_books(author_id)

    if request.method == 'GET' or author_books:
        if author is None:
            return redirect(url_for('author_list'))
        if author_books and request.method == 'POST':
            logger.info("Refused to delete author id=%s: %d book(s) remain", author_id, len(author_books))
        return render_page(AUTHOR_DELETE_HTML, title="Delete Author", author=author,
                           author_books=author_books)

    if author is not None:
        db.session.delete(author)
        db.session.commit()
        logger.info("Deleted author id=%s", author_id)
        flash("Author deleted.", "success")
    return redirect(url_for('author_list'))


@app.route('/catalog/author/<int:author_id>/update', methods=['GET', 'POST'])
def author_update(author_id):
    author = db.session.get(Author, author_id)
    if author is None:
        abort(404, description="Author not found")

    if request.method == 'GET':
        form = AuthorForm(obj=author)
        return render_page(AUTHOR_FORM_HTML, title="Update Author", form=form)

    form = AuthorForm()
    if not form.validate_on_submit():
        logger.info("Author update id=%s rejected: invalid fields %s", author_id, sorted(form.errors))
        return render_page(AUTHOR_FORM_HTML, title="Update Author", form=form,
                           errors=form.error_messages())
    form.apply_to(author)
    db.session.commit()
    logger.info("Updated author id=%s", author_id)
    return redirect(author.url)


# -----------------------
# Error handlers
# -----------------------
@app.errorhandler(404)
def not_found(e):
    return render_page(ERROR_HTML, title="Not Found", message=e.description), 404


@app.errorhandler(405)
def method_not_allowed(e):
    return render_page(ERROR_HTML, title="Method Not Allowed", message=e.description), 405


@app.errorhandler(CSRFError)
def csrf_error(e):
    logger.warning("CSRF check failed on %s: %s", request.path, e.description)
    return render_page(ERROR_HTML, title="Bad Request", message=e.description), 400


@app.errorhandler(SQLAlchemyError)
def database_error(e):
    db.session.rollback()
    logger.exception("Database error on %s %s", request.method, request.path)
    return render_page(ERROR_HTML, title="Server Error",
                       message="The catalog database could not complete the request."), 500


# -----------------------
# Database init
# -----------------------
SAMPLE_CATALOG = [
    (("Patrick", "Rothfuss", "1973-06-06", None), [
        ("The Name of the Wind (The Kingkiller Chronicle, #1)", "9781473211896",
         "I have stolen princesses back from sleeping barrow kings. I burned down the town of Trebon."),
        ("The Wise Man's Fear (The Kingkiller Chronicle, #2)", "9788401352836",
         "Picking up the tale of Kvothe Kingkiller once again."),
    ]),
    (("Ben", "Bova", "1932-11-08", None), [
        ("Apes and Angels", "9780765379528",
         "Humankind headed out to the stars not for conquest, nor exploration."),
    ]),
    (("Isaac", "Asimov", "1920-01-02", "1992-04-06"), []),
    (("Bob", "Billings", None, None), []),
]


def seed_if_empty():
    """Add the sample authors and books when the catalog has no authors yet."""
    if Author.query.first() is not None:
        return False
    for (first_name, family_name, born, died), books in SAMPLE_CATALOG:
        author = Author(
            first_name=first_name,
            family_name=family_name,
            date_of_birth=isoparse(born).date() if born else None,
            date_of_death=isoparse(died).date() if died else None,
        )
        author.books = [Book(title=title, isbn=isbn, summary=summary) for title, isbn, summary in books]
        db.session.add(author)
    db.session.commit()
    return True


@app.cli.command("init-db")
@click.option("--sample", is_flag=True, help="Add sample authors and books to an empty catalog.")
def init_db_command(sample):
    """Create the catalog tables (and optionally sample data)."""
    db.create_all()
    logger.info("Created tables on %s", db.engine.url.render_as_string(hide_password=True))
    if sample:
        if seed_if_empty():
            click.echo("Initialized the catalog with sample data.")
        else:
            click.echo("Catalog already has authors; sample data skipped.")
    else:
        click.echo("Initialized the catalog.")


if __name__ == '__main__':
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    with app.app_context():
        db.create_all()
    # Use a real WSGI server (gunicorn/uWSGI) in production
    app.run(host="127.0.0.1", port=5000, debug=os.environ.get("FLASK_DEBUG") == "1")

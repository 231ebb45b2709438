import json
from typing import Iterator, Optional

import pytest
from flask import Flask
from flask_sqlalchemy import SQLAlchemy

from jsonapi_pipeline import API, JSONAPI_MIMETYPE, JsonapiRestApi, SQLAlchemyDB

db = SQLAlchemy()

book_tags = db.Table(
    "book_tags",
    db.Column("book_id", db.Integer, db.ForeignKey("books.id"), primary_key=True),
    db.Column("tag_id", db.Integer, db.ForeignKey("tags.id"), primary_key=True),
)


class User(db.Model):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String)
    email = db.Column(db.String)
    books = db.relationship("Book", back_populates="user")
    profile = db.relationship("Profile", back_populates="user", uselist=False)


class Profile(db.Model):
    __tablename__ = "profiles"
    id = db.Column(db.Integer, primary_key=True)
    bio = db.Column(db.String)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    user = db.relationship("User", back_populates="profile")


class Book(db.Model):
    __tablename__ = "books"
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String)
    pages = db.Column(db.Integer)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    user = db.relationship("User", back_populates="books")
    tags = db.relationship("Tag", secondary=book_tags, back_populates="books")


class Tag(db.Model):
    __tablename__ = "tags"
    allow_client_generated_ids = True
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String)
    books = db.relationship("Book", secondary=book_tags, back_populates="tags")


MODELS = [User, Profile, Book, Tag]

HEADERS = {"Content-Type": JSONAPI_MIMETYPE, "Accept": JSONAPI_MIMETYPE}


@pytest.fixture
def app() -> Iterator[Flask]:
    app = Flask("jsonapi_pipeline_tests")
    app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
    app.config["TESTING"] = True
    db.init_app(app)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def seed(app: Flask) -> dict:
    """
    alice: books "Dune" (tags scifi, classic) and "Emma", profile
    bob: no books
    """
    alice = User(id=1, name="alice", email="alice@example.com")
    bob = User(id=2, name="bob", email="bob@example.com")
    scifi = Tag(id=1, name="scifi")
    classic = Tag(id=2, name="classic")
    novel = Tag(id=3, name="novel")
    dune = Book(id=1, title="Dune", pages=412, user=alice, tags=[scifi, classic])
    emma = Book(id=2, title="Emma", pages=300, user=alice)
    profile = Profile(id=1, bio="reader", user=alice)
    db.session.add_all([alice, bob, scifi, classic, novel, dune, emma, profile])
    db.session.commit()
    return dict(alice=alice, bob=bob, dune=dune, emma=emma)


def make_api(**options) -> API:
    options.setdefault("default_handler_models", MODELS)
    return API(SQLAlchemyDB(db.session), **options)


def send(client, method: str, url: str, document: Optional[dict] = None, headers: Optional[dict] = None):
    """Request with a json:api document body"""
    data = None if document is None else json.dumps(document)
    return client.open(url, method=method, data=data, headers=HEADERS if headers is None else headers)


def identifiers(response) -> list:
    """Sorted ids of the resources in a response document"""
    data = response.get_json()["data"]
    if data is None:
        return []
    if isinstance(data, dict):
        return [data["id"]]
    return sorted(item["id"] for item in data)


@pytest.fixture
def api(app: Flask) -> API:
    return make_api()


@pytest.fixture
def client(app: Flask, api: API):
    JsonapiRestApi(app, api)
    return app.test_client()

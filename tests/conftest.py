import os
import tempfile

# Keep the dev database and blob directory out of the source tree
os.environ.setdefault("QUOTELINKS_DATA_DIR", tempfile.mkdtemp(prefix="quotelinks-test-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from quotelinks import database
from quotelinks.blobstore import LocalBlobStore, get_blob_store
from quotelinks.metadata import get_extractor
from quotelinks.og_image import get_renderer

from .helpers import IMAGE_HOST, StubExtractor, StubRenderer


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    database.Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(tmp_path / "blobs", IMAGE_HOST)


@pytest.fixture
def extractor():
    return StubExtractor()


@pytest.fixture
def renderer():
    return StubRenderer()


@pytest.fixture
def client(session_factory, blobs, extractor, renderer):
    from quotelinks.main import app

    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[database.get_db] = override_db
    app.dependency_overrides[get_blob_store] = lambda: blobs
    app.dependency_overrides[get_extractor] = lambda: extractor
    app.dependency_overrides[get_renderer] = lambda: renderer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

from fastapi.testclient import TestClient

from app.main import configure, create_app


def test_health() -> None:
    client = TestClient(create_app())
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_lifespan_keeps_configured_store_and_tears_it_down(blob_store, transcoder, workdirs) -> None:
    app = configure(create_app(), blob_store=blob_store, transcoder=transcoder, workdirs=workdirs)

    with TestClient(app) as client:
        assert client.get("/api/videos").json() == []
        assert app.state.blob_store is blob_store

    assert blob_store.torn_down is True
    assert app.state.tasks.pending == 0

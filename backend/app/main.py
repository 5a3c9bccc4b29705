import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routes.stories import router as stories_router
from routes.videos import router as videos_router
from services.assembly import ClipAssemblyEngine
from services.background import TaskRegistry
from services.blob_store import BlobStore
from services.gcs import GcsBlobStore
from services.ingestion import Transcriber, VideoIngestionPipeline
from services.stories import Narrator, StoryService
from services.transcode import FfmpegTranscoder
from services.workdir import WorkingDirectoryManager

# Load .env from the backend dir
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def configure(
    app: FastAPI,
    *,
    blob_store: BlobStore,
    transcoder: FfmpegTranscoder | None = None,
    workdirs: WorkingDirectoryManager | None = None,
    transcriber: Transcriber | None = None,
    narrator: Narrator | None = None,
) -> FastAPI:
    """Wire collaborators onto app.state; routes reach them through routes.deps."""
    transcoder = transcoder or FfmpegTranscoder()
    workdirs = workdirs or WorkingDirectoryManager()
    tasks = TaskRegistry()
    engine = ClipAssemblyEngine(blob_store, transcoder, workdirs)

    app.state.blob_store = blob_store
    app.state.tasks = tasks
    app.state.engine = engine
    app.state.ingestion = VideoIngestionPipeline(
        blob_store,
        transcoder,
        tasks,
        workdirs=workdirs,
        transcriber=transcriber,
    )
    app.state.story_service = StoryService(engine, narrator=narrator)
    return app


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "blob_store", None) is None:
        configure(app, blob_store=GcsBlobStore.init())
    try:
        yield
    finally:
        await app.state.tasks.cancel_all()
        await app.state.blob_store.teardown()
        logger.info("[app] Shut down")


def create_app() -> FastAPI:
    app = FastAPI(title="Memory Lane API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(videos_router, prefix="/api")
    app.include_router(stories_router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.environ.get("HOST", "0.0.0.0"), port=int(os.environ.get("PORT", "8000")))

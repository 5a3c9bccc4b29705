"""In-memory record store for MVP. Keyed by record ID."""

from models import Story, VideoRecord

videos: dict[str, VideoRecord] = {}
stories: dict[str, Story] = {}

from .clip import AssemblyRequest, AssemblyResult, ClipReference, FileRole, WorkingFile
from .story import Story
from .video import ProcessingStatus, VideoRecord

__all__ = [
    "AssemblyRequest",
    "AssemblyResult",
    "ClipReference",
    "FileRole",
    "WorkingFile",
    "ProcessingStatus",
    "VideoRecord",
    "Story",
]

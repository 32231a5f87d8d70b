"""SQLModel database models for davspace."""

from davspace.models.files import DriveFile, DriveFileBase
from davspace.models.folders import Folder, FolderBase

__all__ = [
    "DriveFile",
    "DriveFileBase",
    "Folder",
    "FolderBase",
]

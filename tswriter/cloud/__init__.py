# cloud/__init__.py
from tswriter.cloud.adapter import RemoteAdapter
from tswriter.cloud.drive import DriveClient
from tswriter.cloud.models import (
    BookInfo, CloudBookInfo, CloudBooksIndex, DriveFile, IndexEntry, RemoteBook,
)

__all__ = [
    "RemoteAdapter",
    "DriveClient",
    "BookInfo", "CloudBookInfo", "CloudBooksIndex", "DriveFile", "IndexEntry", "RemoteBook",
]

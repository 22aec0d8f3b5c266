"""Document store implementations."""

from .base import DocumentStore
from .filesystem import FileSystemStore

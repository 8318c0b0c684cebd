"""Destinations for exported run records."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from .logging import get_logger

logger = get_logger(__name__)


class RunExportSink(ABC):
    """Receives a serialized run record under a deterministic file name."""

    @abstractmethod
    def write(self, filename: str, content: bytes) -> Optional[str]:
        """
        Deliver an exported run record.

        Args:
            filename: Name derived from workflow name, ID and start time
            content: UTF-8 JSON document

        Returns:
            A location the record can be found at, when the sink has one
        """


class FileSystemSink(RunExportSink):
    """Writes run records as JSON files into a directory."""

    def __init__(self, directory: str = "execution_logs"):
        self.directory = Path(directory)

    def write(self, filename: str, content: bytes) -> Optional[str]:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / filename
        path.write_bytes(content)
        logger.info(f"Run log saved to: {path}")
        return str(path)


class MemorySink(RunExportSink):
    """Keeps exported run records in memory."""

    def __init__(self):
        self.documents: Dict[str, bytes] = {}

    def write(self, filename: str, content: bytes) -> Optional[str]:
        self.documents[filename] = content
        return filename

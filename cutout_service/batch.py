"""
Batch runner.

Processes vehicle photo sets through the shared pipeline one item at a time.
A failing item is recorded and the batch moves on; storage and upload are
left to the caller so this can sit behind any queue or CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import time
from typing import Callable, Iterable, List, Optional, Union

from .config import PipelineConfig
from .errors import CutoutError
from .pipeline import process_source

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".bmp"}

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"


@dataclass
class BatchItem:
    name: str
    source: Union[bytes, str, Path]


@dataclass
class BatchItemResult:
    name: str
    status: str
    output_name: Optional[str] = None
    png_bytes: Optional[bytes] = None
    error: Optional[str] = None


@dataclass
class ProcessingProgress:
    current: int
    total: int
    current_file: str
    status: str


@dataclass
class BatchResult:
    total_count: int
    items: List[BatchItemResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return sum(1 for item in self.items if item.status == STATUS_COMPLETED)

    @property
    def success(self) -> bool:
        return self.processed_count > 0


def is_supported_image_name(name: str) -> bool:
    return Path(name).suffix.lower() in SUPPORTED_EXTENSIONS


def processed_filename(
    original: str, vehicle_id: Optional[str] = None, timestamp_ms: Optional[int] = None
) -> str:
    """`<stem>[_<vehicle_id>]_processed_<timestamp>.png`"""
    stem = Path(original).stem
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    suffix = f"_{vehicle_id}_processed" if vehicle_id else "_processed"
    return f"{stem}{suffix}_{timestamp_ms}.png"


def collect_folder_items(folder: Union[str, Path]) -> List[BatchItem]:
    """Gather supported images in `folder`, sorted by name."""
    folder = Path(folder)
    if not folder.is_dir():
        raise ValueError(f"Not a directory: {folder}")
    items = [
        BatchItem(name=path.name, source=path)
        for path in sorted(folder.iterdir())
        if path.is_file() and is_supported_image_name(path.name)
    ]
    if not items:
        raise ValueError(f"No valid image files found in {folder}")
    return items


def process_batch(
    items: Iterable[BatchItem],
    pipeline_config: Optional[PipelineConfig] = None,
    on_progress: Optional[Callable[[ProcessingProgress], None]] = None,
    vehicle_id: Optional[str] = None,
) -> BatchResult:
    """
    Process a batch of images synchronously, in input order.

    Returns a `BatchResult` whose `items` line up with the input. Only
    `CutoutError` is caught per item; anything else is a bug and propagates.
    """
    items = list(items)
    result = BatchResult(total_count=len(items))

    def report(index: int, name: str, status: str) -> None:
        if on_progress is not None:
            on_progress(ProcessingProgress(index + 1, len(items), name, status))

    for index, item in enumerate(items):
        report(index, item.name, STATUS_PROCESSING)
        logger.info("Processing batch item %d/%d name=%s", index + 1, len(items), item.name)

        if not is_supported_image_name(item.name):
            message = "unsupported image format"
        else:
            try:
                png_bytes = process_source(item.source, pipeline_config=pipeline_config)
            except CutoutError as exc:
                message = str(exc)
            else:
                result.items.append(
                    BatchItemResult(
                        name=item.name,
                        status=STATUS_COMPLETED,
                        output_name=processed_filename(item.name, vehicle_id),
                        png_bytes=png_bytes,
                    )
                )
                report(index, item.name, STATUS_COMPLETED)
                continue

        logger.warning("Batch item %s failed: %s", item.name, message)
        result.items.append(BatchItemResult(name=item.name, status=STATUS_ERROR, error=message))
        result.errors.append(f"{item.name}: {message}")
        report(index, item.name, STATUS_ERROR)

    logger.info("Batch finished: %d/%d completed", result.processed_count, result.total_count)
    return result

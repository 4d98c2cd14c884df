"""Rich progress tracking for a media sync batch.

Two tiers:

* **Files** -- one tick per input file, whatever its outcome
* **Reorder** -- one tick per touched entity at batch end

The status column shows the last file or entity handled.
"""

from __future__ import annotations

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)

from mediasync.models import BatchResult, ReorderResult, StatusTag


class UploadProgressTracker:
    """Rich progress tracker for the upload pipeline.

    Usage::

        with UploadProgressTracker(total_files=len(files)) as tracker:
            orchestrator = BatchOrchestrator(client, config, progress=tracker)
            report = await orchestrator.run(files)
    """

    def __init__(self, total_files: int) -> None:
        self._total_files = total_files

        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeRemainingColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
        )

        self._files_task: TaskID | None = None
        self._reorder_task: TaskID | None = None

        self._stats: dict[str, int] = {
            "succeeded": 0,
            "failed": 0,
            "skipped": 0,
            "reordered": 0,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the Rich progress display."""
        self._progress.start()
        self._files_task = self._progress.add_task(
            "[green]Files",
            total=self._total_files,
            status="starting...",
        )

    def stop(self) -> None:
        """Stop the Rich progress display."""
        self._progress.stop()

    def __enter__(self) -> UploadProgressTracker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # File-level events
    # ------------------------------------------------------------------

    def file_started(self, filename: str) -> None:
        if self._files_task is not None:
            self._progress.update(self._files_task, status=_truncate_name(filename))

    def file_done(self, result: BatchResult) -> None:
        """Record the outcome of one file."""
        name = _truncate_name(result.filename)
        if result.status.succeeded:
            self._stats["succeeded"] += 1
            status = name
        elif result.status is StatusTag.SKIPPED:
            self._stats["skipped"] += 1
            status = f"[yellow]SKIP[/yellow] {name}"
        else:
            self._stats["failed"] += 1
            status = f"[red]{result.status.value.upper()}[/red] {name}"

        if self._files_task is not None:
            self._progress.advance(self._files_task, 1)
            self._progress.update(self._files_task, status=status)

    # ------------------------------------------------------------------
    # Reorder phase
    # ------------------------------------------------------------------

    def start_reorder(self, total_entities: int) -> None:
        self._reorder_task = self._progress.add_task(
            "[blue]Reorder",
            total=total_entities,
            status="",
        )

    def entity_reordered(self, result: ReorderResult) -> None:
        if result.status == "reordered":
            self._stats["reordered"] += 1
        if self._reorder_task is not None:
            self._progress.advance(self._reorder_task, 1)
            self._progress.update(
                self._reorder_task,
                status=f"{result.status} {_truncate_name(result.entity_id)}",
            )

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    @property
    def stats(self) -> dict[str, int]:
        """Return a copy of the current statistics."""
        return dict(self._stats)


def _truncate_name(name: str, max_len: int = 40) -> str:
    """Truncate a file name or id for display, keeping its tail."""
    if len(name) <= max_len:
        return name
    return "..." + name[-(max_len - 3) :]

"""
Batch Generation Manager

Drives many GenerationTasks through an ImageGenerator in concurrency-bounded
chunks, with a persisted checkpoint for resuming after restarts.
"""

import asyncio
import json
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from ..config import settings
from ..models import CardDefinition, utcnow
from .generator import ImageGenerator
from .models import (
    BatchCheckpoint,
    BatchStatus,
    GenerateOptions,
    GenerationMetadata,
    GenerationResult,
    GenerationTask,
    TaskStatus,
)
from .prompts import PromptBuilder

logger = logging.getLogger(__name__)

STATE_FILENAME = "batch-state.json"


class BatchAlreadyRunningError(RuntimeError):
    """Raised when run() is called while a run is in flight."""
    pass


@dataclass
class BatchHooks:
    """
    Lifecycle callbacks. Any hook may be left as None.

    Hooks run on the event loop thread; an exception raised by a hook is
    logged and does not affect the task or the run.
    """

    on_task_start: Optional[Callable[[GenerationTask], None]] = None
    on_task_complete: Optional[Callable[[GenerationTask], None]] = None
    on_task_fail: Optional[Callable[[GenerationTask, Exception], None]] = None
    on_batch_progress: Optional[Callable[[BatchStatus], None]] = None
    on_batch_complete: Optional[Callable[[List[GenerationTask]], None]] = None


class BatchManager:
    """
    Orchestrates generation for one theme.

    Task state machine:
        pending -> generating -> review | approved   (success)
                              -> pending             (failure, attempts < max_attempts)
                              -> failed              (failure, attempts == max_attempts)
        failed  -> pending via retry_failed()

    Tasks live in a dict keyed by item id. Every in-flight task owns its key
    exclusively (a chunk is drawn from distinct dict values), so concurrent
    tasks never write the same entry and no lock is needed.
    """

    def __init__(
        self,
        theme: str,
        prompt_builder: Optional[PromptBuilder] = None,
        generator: Optional[ImageGenerator] = None,
        output_dir: Optional[Path] = None,
        concurrency: Optional[int] = None,
        max_attempts: Optional[int] = None,
        enable_review: Optional[bool] = None,
        call_timeout: Optional[float] = None,
        hooks: Optional[BatchHooks] = None,
    ):
        """
        Args:
            theme: Theme id; selects the checkpoint directory
            prompt_builder: Turns a CardDefinition into prompt/negative prompt;
                required by add_cards()
            generator: Provider wrapper that generates and saves one image;
                required by run(). Without it the manager can still inspect,
                review and retry checkpointed tasks.
            output_dir: Pipeline output root (default: settings.output_dir)
            concurrency: Tasks dispatched together per chunk
            max_attempts: Attempt budget for new tasks
            enable_review: Successful tasks go to 'review' instead of 'approved'
            call_timeout: Seconds before a single generator call is abandoned; 0 disables
            hooks: Lifecycle callbacks
        """
        self.theme = theme
        self.prompt_builder = prompt_builder
        self.generator = generator
        self.output_dir = Path(output_dir or settings.output_dir)
        self.concurrency = max(1, concurrency or settings.concurrency)
        self.max_attempts = max(1, max_attempts or settings.max_attempts)
        self.enable_review = settings.enable_review if enable_review is None else enable_review
        self.call_timeout = settings.provider_timeout if call_timeout is None else call_timeout
        self.hooks = hooks or BatchHooks()

        self.state_file = self.output_dir / theme / STATE_FILENAME
        self.tasks: Dict[str, GenerationTask] = {}

        self._running = False
        self._stop_requested = False
        self._resumed = False

    @property
    def is_running(self) -> bool:
        return self._running

    def add_cards(
        self,
        items: Iterable[Union[CardDefinition, dict]],
        theme: Optional[str] = None,
    ) -> int:
        """
        Create a pending task for every item whose id is not yet tracked.

        Existing tasks are left untouched, progress included.

        Returns:
            Number of tasks created
        """
        if self.prompt_builder is None:
            raise RuntimeError("add_cards() needs a prompt builder")

        theme = theme or self.theme
        created = 0

        for item in items:
            card = item if isinstance(item, CardDefinition) else CardDefinition.model_validate(item)
            if card.id in self.tasks:
                continue

            prompt = self.prompt_builder.build(card)
            self.tasks[card.id] = GenerationTask(
                item_id=card.id,
                item=card,
                theme=theme,
                prompt=prompt.prompt,
                negative_prompt=prompt.negative_prompt,
                max_attempts=self.max_attempts,
            )
            created += 1

        logger.info(f"Added {created} tasks ({len(self.tasks)} total) for theme {theme}")
        return created

    async def run(self) -> List[GenerationTask]:
        """
        Process every pending task in chunks of `concurrency`.

        The first run() of an instance resumes from the checkpoint (merged
        into tasks added beforehand). Every run() first puts tasks left in
        'generating' by an interrupted run back to 'pending'. Each chunk is
        awaited as a whole, then
        the checkpoint is written and on_batch_progress fires. Tasks that fail
        with attempts left go back to 'pending' and wait for the next run().

        Returns:
            The tasks processed by this run, in dispatch order

        Raises:
            BatchAlreadyRunningError: If a run is already in flight
        """
        if self._running:
            raise BatchAlreadyRunningError("Batch is already running")
        if self.generator is None:
            raise RuntimeError("run() needs an image generator")

        self._running = True
        self._stop_requested = False
        processed: List[GenerationTask] = []

        try:
            if not self._resumed:
                self.load_state()
            self._reset_interrupted()

            pending = self.get_tasks_by_status("pending")
            logger.info(
                f"Starting batch for {self.theme}: {len(pending)} pending, "
                f"concurrency {self.concurrency}"
            )

            for start in range(0, len(pending), self.concurrency):
                if self._stop_requested:
                    logger.info(f"Stop requested; {len(pending) - start} tasks left pending")
                    break

                # Tasks come from distinct dict keys, so no two in-flight tasks share an item id
                chunk = pending[start:start + self.concurrency]

                results = await asyncio.gather(*(self._process_task(task) for task in chunk))
                processed.extend(results)

                self._checkpoint()
                self._emit("on_batch_progress", self.get_status())
        finally:
            self._running = False

        self._emit("on_batch_complete", processed)
        return processed

    def stop(self) -> None:
        """Stop after the chunk currently in flight."""
        self._stop_requested = True

    async def _process_task(self, task: GenerationTask) -> GenerationTask:
        task.status = "generating"
        task.attempts += 1
        task.touch()

        self._emit("on_task_start", task)

        try:
            output = await self._generate(task)
            info = self.generator.get_provider_info()

            task.result = GenerationResult(
                task_id=task.id,
                raw_image_path=output.saved_path or "",
                metadata=GenerationMetadata(
                    provider=info.name,
                    model=info.model,
                    generated_at=utcnow(),
                    prompt=task.prompt,
                    revised_prompt=output.image.revised_prompt,
                    seed=output.image.seed,
                ),
            )
            task.status = "review" if self.enable_review else "approved"
            task.error = None
            task.touch()

            logger.info(f"Generated {task.item_id} -> {task.status}")
            self._emit("on_task_complete", task)

        except asyncio.CancelledError:
            # Cancelled mid-call: the attempt never finished
            task.status = "pending"
            task.attempts = max(0, task.attempts - 1)
            task.touch()
            logger.warning(f"Generation cancelled for {task.item_id}, back to pending")
            raise

        except Exception as e:
            message = str(e) or type(e).__name__

            if task.attempts < task.max_attempts:
                task.status = "pending"
                logger.warning(
                    f"Generation failed for {task.item_id} "
                    f"(attempt {task.attempts}/{task.max_attempts}), will retry: {message}"
                )
            else:
                task.status = "failed"
                task.error = message
                logger.error(f"Generation failed for {task.item_id}, attempts exhausted: {message}")
            task.touch()

            self._emit("on_task_fail", task, e)

        self.tasks[task.item_id] = task
        return task

    async def _generate(self, task: GenerationTask):
        call = self.generator.generate(
            GenerateOptions(prompt=task.prompt, negative_prompt=task.negative_prompt),
            f"{task.item_id}.png",
        )
        if not self.call_timeout or self.call_timeout <= 0:
            return await call

        try:
            return await asyncio.wait_for(call, timeout=self.call_timeout)
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"Generation timed out after {self.call_timeout:g}s") from e

    def get_status(self) -> BatchStatus:
        counts = Counter(task.status for task in self.tasks.values())
        total = len(self.tasks)
        completed = counts["approved"] + counts["review"]
        # Half-up rounding
        progress = int(completed * 100 / total + 0.5) if total else 0

        return BatchStatus(
            total=total,
            pending=counts["pending"],
            generating=counts["generating"],
            review=counts["review"],
            approved=counts["approved"],
            rejected=counts["rejected"],
            failed=counts["failed"],
            completed=completed,
            progress=progress,
        )

    def get_tasks(self) -> List[GenerationTask]:
        return list(self.tasks.values())

    def get_task(self, item_id: str) -> Optional[GenerationTask]:
        return self.tasks.get(item_id)

    def get_tasks_by_status(self, status: TaskStatus) -> List[GenerationTask]:
        return [task for task in self.tasks.values() if task.status == status]

    def retry_failed(self) -> int:
        """
        Reset failed tasks to pending with a fresh attempt budget.

        Returns:
            Number of tasks reset
        """
        count = 0
        for task in self.tasks.values():
            if task.status == "failed":
                task.status = "pending"
                task.attempts = 0
                task.error = None
                task.touch()
                count += 1

        if count > 0:
            logger.info(f"Reset {count} failed tasks for retry")
        return count

    def update_task_status(self, item_id: str, status: TaskStatus) -> bool:
        """Set a task's status directly (review tooling). Returns False for unknown ids."""
        task = self.tasks.get(item_id)
        if task is None:
            return False

        task.status = status
        task.touch()
        return True

    def clear_state(self) -> None:
        """Forget every task in memory. The checkpoint file is left as is."""
        self.tasks.clear()

    def save_state(self) -> Path:
        """Write all tasks to the checkpoint file."""
        checkpoint = BatchCheckpoint(
            saved_at=utcnow(),
            tasks=list(self.tasks.items()),
        )

        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.state_file.write_text(
            json.dumps(checkpoint.to_json_dict(), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        return self.state_file

    def load_state(self) -> bool:
        """
        Merge the checkpoint into the in-memory tasks.

        Checkpointed tasks replace in-memory tasks with the same item id;
        tasks only present in memory are kept. Tasks saved mid-flight
        ('generating') come back as 'pending'.

        Returns:
            True if a checkpoint was loaded; False if it is missing or unreadable
        """
        self._resumed = True

        if not self.state_file.exists():
            return False

        try:
            data = json.loads(self.state_file.read_text(encoding="utf-8"))
            checkpoint = BatchCheckpoint.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable checkpoint {self.state_file}: {e}")
            return False

        for item_id, task in checkpoint.tasks:
            self.tasks[item_id] = task
        self._reset_interrupted()

        logger.info(
            f"Loaded checkpoint from {checkpoint.saved_at.isoformat()}: "
            f"{len(checkpoint.tasks)} tasks"
        )
        return True

    def _reset_interrupted(self) -> int:
        """Put tasks left in 'generating' (no call in flight) back to 'pending'."""
        reset_count = 0
        for task in self.tasks.values():
            if task.status == "generating":
                task.status = "pending"
                task.touch()
                reset_count += 1

        if reset_count > 0:
            logger.info(f"Reset {reset_count} interrupted 'generating' tasks to 'pending'")
        return reset_count

    def _checkpoint(self) -> None:
        """save_state() for use between chunks; a failed write must not abort the run."""
        try:
            self.save_state()
        except OSError as e:
            logger.error(f"Failed to save checkpoint {self.state_file}: {e}")

    def _emit(self, hook_name: str, *args) -> None:
        hook = getattr(self.hooks, hook_name)
        if hook is None:
            return
        try:
            hook(*args)
        except Exception:
            logger.exception(f"Batch hook {hook_name} raised")

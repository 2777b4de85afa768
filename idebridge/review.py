"""Code review runner driven by claude CLI stream-json output.

The review is a small state machine::

    idle -> initializing -> streaming -> complete
                                      -> error

Output chunks go through a StreamJsonParser and each classified event moves
the machine or appends text. Listeners observe it through the event bus:
status changes are published immediately, content updates are coalesced.
"""

import asyncio
import os
import signal
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Union
import structlog

from idebridge.config import ReviewSettings
from idebridge.core.errors import describe_error
from idebridge.core.events import EventBus, EventType
from idebridge.stream import events as stream_events
from idebridge.stream.events import StreamEvent
from idebridge.stream.parser import StreamJsonParser

log = structlog.get_logger()

READ_CHUNK_SIZE = 4096

CODE_REVIEW_PROMPT = """You are performing a code review on the changes in the current branch.


## Code Review Instructions

The entire git diff for this branch has been provided below, as well as a list of all commits made to this branch.

**CRITICAL: EVERYTHING YOU NEED IS ALREADY PROVIDED BELOW.** The complete git diff and full commit history are included in this message.

**DO NOT run git diff, git log, git status, or ANY other git commands.** All the information you need to perform this review is already here.

When reviewing the diff:
1. **Focus on logic and correctness** - Check for bugs, edge cases, and potential issues.
2. **Consider readability** - Is the code clear and maintainable? Does it follow best practices in this repository?
3. **Evaluate performance** - Are there obvious performance concerns or optimizations that could be made?
4. **Assess test coverage** - Does the repository have testing patterns? If so, are there adequate tests for these changes?
5. **Ask clarifying questions** - Ask the user for clarification if you are unsure about the changes or need more context.
6. **Don't be overly pedantic** - Nitpicks are fine, but only if they are relevant issues within reason.

In your output:
- Provide a summary overview of the general code quality.
- Present the identified issues in a table with the columns: index (1, 2, etc.), line number(s), code, issue, and potential solution(s).
- If no issues are found, briefly state that the code meets best practices.

## Full Diff

**REMINDER: DO NOT use any tools to fetch git information.** Simply read the diff and commit history that follow.

$(git diff HEAD)

## Commit History

$(git log origin/main..HEAD)"""


class ReviewStatus(str, Enum):
    """Review lifecycle states."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class ReviewState:
    """Immutable view of a review for listeners."""

    status: ReviewStatus
    content: str
    cost: Optional[float] = None
    model: Optional[str] = None
    error: Optional[str] = None


def build_review_command(settings: ReviewSettings) -> str:
    """Build the shell command line for a review.

    The prompt is double-quoted rather than shell-escaped so that the
    ``$(git ...)`` substitutions inside it are expanded by the shell.
    """
    prompt = CODE_REVIEW_PROMPT
    if settings.reply_language:
        prompt = f"Always reply in {settings.reply_language}.\n{prompt}"
    escaped = prompt.replace('"', '\\"')
    return (
        f'{settings.claude_executable} "{escaped}" -p --output-format stream-json '
        '--no-session-persistence --disallowedTools "Bash(git:*) Edit" '
        f"--model {settings.model} --verbose --include-partial-messages"
    )


def shell_argv(command: str, platform: str = sys.platform) -> list[str]:
    """Wrap a command line for the platform shell."""
    if platform == "win32":
        return ["cmd.exe", "/c", command]
    return ["/bin/sh", "-c", command]


class CodeReview:
    """One code review session in a repository.

    Only one subprocess belongs to a review at a time; ``start`` tears down
    whatever was running before spawning a new one.
    """

    def __init__(
        self,
        repo_path: Optional[Union[str, Path]],
        settings: Optional[ReviewSettings] = None,
        event_bus: Optional[EventBus] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        """Create a review.

        Args:
            repo_path: Repository to review; None makes ``start`` fail fast
            settings: Review settings (model, executable, timers)
            event_bus: Bus receiving status and content updates
            env: Environment for the subprocess (defaults to ours)
        """
        self.repo_path = Path(repo_path) if repo_path else None
        self.settings = settings or ReviewSettings()
        self.event_bus = event_bus or EventBus()
        self.env = dict(env) if env is not None else None

        self.status = ReviewStatus.IDLE
        self.content = ""
        self.cost: Optional[float] = None
        self.model: Optional[str] = None
        self.error: Optional[str] = None

        self._parser = StreamJsonParser()
        self._process: Optional[asyncio.subprocess.Process] = None
        self._tasks: list[asyncio.Task] = []
        self._exit_timer: Optional[asyncio.TimerHandle] = None
        self._flush_timer: Optional[asyncio.TimerHandle] = None
        self._finished = asyncio.Event()
        self._finished.set()

    def snapshot(self) -> ReviewState:
        return ReviewState(
            status=self.status,
            content=self.content,
            cost=self.cost,
            model=self.model,
            error=self.error,
        )

    @property
    def running(self) -> bool:
        return self._process is not None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def handle_output(self, chunk: Union[str, bytes]) -> None:
        """Feed raw subprocess output through the parser."""
        for event in self._parser.feed(chunk):
            self.handle_event(event)

    def handle_event(self, event: StreamEvent) -> None:
        """Apply one classified stream event."""
        if stream_events.is_init(event):
            self._set_status(ReviewStatus.STREAMING)
            return

        text = stream_events.extract_text_delta(event)
        if text:
            self._append(text)

        if stream_events.is_message_end(event):
            self._append("\n\n")

        if stream_events.is_result(event):
            cost = stream_events.extract_cost(event)
            if cost is not None:
                self.cost = cost
            model = stream_events.extract_model(event)
            if model is not None:
                self.model = model
            self._set_status(ReviewStatus.COMPLETE)

        if stream_events.is_error(event):
            self.error = stream_events.extract_error_message(event)
            self._set_status(ReviewStatus.ERROR)

    def handle_exit(self, exit_code: int) -> None:
        """Apply subprocess exit.

        A nonzero exit fails the review unless it already completed; a clean
        exit never overrides the current status.
        """
        log.info("review_process_exited", exit_code=exit_code, status=self.status.value)
        if exit_code != 0 and self.status not in (ReviewStatus.COMPLETE, ReviewStatus.ERROR):
            self.error = f"Process exited with code {exit_code}"
            self._set_status(ReviewStatus.ERROR)
        self._flush()
        self._finished.set()

    def _fail(self, message: str) -> None:
        self.error = message
        self._set_status(ReviewStatus.ERROR)
        self._finished.set()

    def _set_status(self, status: ReviewStatus) -> None:
        if status is self.status:
            return
        # Listeners see text that preceded the transition first
        self._flush()
        log.debug("review_status_changed", old=self.status.value, new=status.value)
        self.status = status
        self.event_bus.emit(EventType.REVIEW_STATUS_CHANGED, self.snapshot())

    def _append(self, text: str) -> None:
        self.content += text
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._flush_timer is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._emit_content()
            return
        self._flush_timer = loop.call_later(
            self.settings.flush_interval_ms / 1000, self._flush
        )

    def _flush(self) -> None:
        if self._flush_timer is None:
            return
        self._flush_timer.cancel()
        self._flush_timer = None
        self._emit_content()

    def _emit_content(self) -> None:
        self.event_bus.emit(EventType.REVIEW_CONTENT_UPDATED, self.content)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start a review, replacing any review already running."""
        if not self.repo_path:
            self._fail("No repository path")
            return

        await self._teardown()

        self.content = ""
        self.error = None
        self.cost = None
        self.model = None
        self._parser.reset()
        self._finished = asyncio.Event()
        self._set_status(ReviewStatus.INITIALIZING)

        if not self.repo_path.is_dir():
            self._fail(f"Repository not found: {self.repo_path}")
            return

        argv = shell_argv(build_review_command(self.settings))
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self.repo_path),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=self.env,
                start_new_session=sys.platform != "win32",
            )
        except OSError as e:
            described = describe_error(e, executable=argv[0])
            log.error("review_spawn_failed", repo=str(self.repo_path), error=str(described))
            self._fail(str(described))
            return

        self._process = process
        self._tasks = [
            asyncio.create_task(self._pump(process)),
            asyncio.create_task(self._watch(process)),
        ]
        log.info(
            "review_started",
            repo=str(self.repo_path),
            pid=process.pid,
            model=self.settings.model,
        )

    async def stop(self) -> None:
        """Stop the review and return to idle."""
        await self._teardown()
        self._set_status(ReviewStatus.IDLE)
        self._finished.set()

    async def reset(self) -> None:
        """Stop the review and clear everything it accumulated."""
        await self._teardown()
        self.content = ""
        self.error = None
        self.cost = None
        self.model = None
        self._parser.reset()
        self._set_status(ReviewStatus.IDLE)
        self._emit_content()
        self._finished.set()

    async def wait(self) -> ReviewState:
        """Wait until the review has finished, failed or been stopped."""
        await self._finished.wait()
        return self.snapshot()

    async def _pump(self, process: asyncio.subprocess.Process) -> None:
        """Feed stdout chunks to the parser until EOF."""
        assert process.stdout is not None
        while True:
            chunk = await process.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self.handle_output(chunk)

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        """Schedule exit handling once the process exits.

        Exit is applied after a short grace period so that output still
        sitting in the pipe is parsed first.
        """
        exit_code = await process.wait()
        loop = asyncio.get_running_loop()
        self._exit_timer = loop.call_later(
            self.settings.exit_grace_ms / 1000, self._on_exit_timer, process, exit_code
        )

    def _on_exit_timer(self, process: asyncio.subprocess.Process, exit_code: int) -> None:
        if process is not self._process:
            return
        self._exit_timer = None
        self._process = None
        self.handle_exit(exit_code)

    async def _teardown(self) -> None:
        """Best-effort cleanup of the subprocess, readers and timers."""
        if self._exit_timer is not None:
            self._exit_timer.cancel()
            self._exit_timer = None
        self._flush()

        process, self._process = self._process, None
        if process is not None and process.returncode is None:
            _kill(process)
            try:
                await asyncio.wait_for(process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                log.warning("review_process_kill_timeout", pid=process.pid)

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        # Release waiters of the run being torn down
        self._finished.set()


def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill the shell and, on POSIX, the claude process it launched."""
    try:
        if sys.platform != "win32":
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass
    except OSError as e:
        log.debug("review_process_kill_failed", pid=process.pid, error=str(e))

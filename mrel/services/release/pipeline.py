"""Task pipeline executor.

A pipeline is an ordered list of tasks run against one mutable context.
Tasks run strictly in order; while the context's skip flag is set only
``always_run`` tasks execute. The first failing task ends the pipeline, and
nothing after it runs, cleanup included.

``run_pipelines`` drives a whole release: one pipeline per package, one at a
time. The first failure triggers rollback of that package and halts the run,
so later packages (which may depend on the failed one) never start.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from mrel.core.result import Err, Result
from mrel.output.console import ConsoleProtocol
from mrel.services.release.errors import ReleaseError


class PipelineContext(Protocol):
    skip_remaining_tasks: bool

    @property
    def title(self) -> str: ...

    @property
    def package_path(self) -> Path | None: ...

    @property
    def new_tag(self) -> str | None: ...


type TaskAction[C] = Callable[[C], Result[None, ReleaseError]]


@dataclass(frozen=True, slots=True)
class Task[C: PipelineContext]:
    title: str
    action: TaskAction[C]
    always_run: bool = False

    def enabled(self, context: C) -> bool:
        return self.always_run or not context.skip_remaining_tasks


class PipelineState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Completed:
    pass


@dataclass(frozen=True, slots=True)
class SkippedNoRelease:
    """The package had nothing release worthy; only always-run tasks executed."""


@dataclass(frozen=True, slots=True)
class Failed:
    task: str
    error: ReleaseError


type PipelineOutcome = Completed | SkippedNoRelease | Failed


@dataclass(slots=True)
class TaskRecord:
    title: str
    state: PipelineState = PipelineState.PENDING


class Pipeline[C: PipelineContext]:
    """Runs a task list once against a context."""

    def __init__(
        self,
        context: C,
        tasks: Sequence[Task[C]],
        *,
        console: ConsoleProtocol,
    ) -> None:
        self.context = context
        self.tasks = tuple(tasks)
        self.state = PipelineState.PENDING
        self.records = [TaskRecord(t.title) for t in self.tasks]
        self._console = console

    @property
    def title(self) -> str:
        return self.context.title

    def executed(self) -> list[str]:
        """Titles of tasks whose action was invoked, in order."""
        return [
            r.title
            for r in self.records
            if r.state in (PipelineState.RUNNING, PipelineState.COMPLETED, PipelineState.FAILED)
        ]

    def run(self) -> PipelineOutcome:
        if self.state is not PipelineState.PENDING:
            raise AssertionError(f"pipeline {self.title} already ran")

        self.state = PipelineState.RUNNING
        self._console.header(self.title)

        for task, record in zip(self.tasks, self.records, strict=True):
            if not task.enabled(self.context):
                record.state = PipelineState.SKIPPED
                self._console.task(task.title, "skipped")
                continue

            record.state = PipelineState.RUNNING
            self._console.task(task.title, "running")
            try:
                result = task.action(self.context)
            except BaseException:
                record.state = PipelineState.FAILED
                self.state = PipelineState.FAILED
                self._console.task(task.title, "failed")
                raise

            if isinstance(result, Err):
                record.state = PipelineState.FAILED
                self.state = PipelineState.FAILED
                self._console.task(task.title, "failed")
                self._console.error(f"{self.title}: {task.title}: {result.error.pretty()}")
                return Failed(task=task.title, error=result.error)

            record.state = PipelineState.COMPLETED
            self._console.task(task.title, "done")

        if self.context.skip_remaining_tasks:
            self.state = PipelineState.SKIPPED
            return SkippedNoRelease()
        self.state = PipelineState.COMPLETED
        return Completed()


@dataclass(frozen=True, slots=True)
class PipelinePlan:
    """A pipeline that is built only when its turn comes.

    Packages are read from disk at pipeline start, after earlier pipelines
    may have rewritten their manifests.
    """

    title: str
    build: Callable[[], Result[Pipeline[Any], ReleaseError]]


@dataclass(slots=True)
class RunReport:
    outcomes: list[tuple[str, PipelineOutcome]] = field(default_factory=list)
    not_started: list[str] = field(default_factory=list)
    rolled_back: str | None = None

    @property
    def failure(self) -> tuple[str, Failed] | None:
        for title, outcome in self.outcomes:
            if isinstance(outcome, Failed):
                return title, outcome
        return None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def titles(self, kind: type[Completed] | type[SkippedNoRelease] | type[Failed]) -> list[str]:
        return [title for title, outcome in self.outcomes if isinstance(outcome, kind)]


Rollback = Callable[[PipelineContext], object]


def run_pipelines(
    plans: Sequence[PipelinePlan],
    *,
    rollback: Rollback,
    console: ConsoleProtocol,
) -> RunReport:
    """Run pipelines one at a time, halting the whole run at the first failure.

    Rollback runs exactly once, for the failing pipeline's context. An
    exception escaping a pipeline is rolled back the same way and re-raised.
    """
    report = RunReport()

    for index, plan in enumerate(plans):
        remaining = [p.title for p in plans[index + 1 :]]

        built = plan.build()
        if isinstance(built, Err):
            # Nothing was touched yet, so there is nothing to roll back.
            console.error(f"{plan.title}: {built.error.pretty()}")
            report.outcomes.append((plan.title, Failed(task="setup", error=built.error)))
            report.not_started = remaining
            break

        pipeline = built.value
        try:
            outcome = pipeline.run()
        except BaseException:
            report.rolled_back = pipeline.title
            rollback(pipeline.context)
            raise

        report.outcomes.append((pipeline.title, outcome))
        if isinstance(outcome, Failed):
            report.rolled_back = pipeline.title
            rollback(pipeline.context)
            report.not_started = remaining
            if remaining:
                console.warning(f"halting release; not started: {', '.join(remaining)}")
            break

    return report

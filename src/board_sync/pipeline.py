"""Stage graph runner for a single sync run.

A pipeline is a fixed set of named stages. Each stage declares the stages it
runs after; it fires once all of them have succeeded, and never more than once
per run. Stages without upstream stages fire at run start. Independent
branches run concurrently as asyncio tasks.

A stage receives a read-only view of the outputs of every stage that had
succeeded when it fired. A stage ends its branch quietly by raising
StageSkipped (or SnapshotDecodeError when an upstream output cannot be
decoded); any other exception marks it failed. Either way its downstream
stages never fire, and the rest of the run carries on.
"""

import asyncio
import logging
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .models import SnapshotDecodeError


logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """The stage graph is malformed."""
    pass


class StageSkipped(Exception):
    """Raised by a stage to end its branch without reporting a failure."""
    pass


class StageStatus(Enum):
    """Outcome of a stage within one run."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    NOT_RUN = "not_run"


class StageArguments(MappingABC):
    """Immutable keyword arguments for a service call.

    Stages derive the arguments of each call from a shared base with
    extend(), which always returns a new value and leaves the base untouched.
    """

    def __init__(self, *args, **kwargs):
        self._data = dict(*args, **kwargs)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"StageArguments({self._data!r})"

    def extend(self, **extra: Any) -> "StageArguments":
        """Return a new set of arguments with `extra` added."""
        return StageArguments(self._data, **extra)


StageAction = Callable[[Mapping[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class Stage:
    """A named unit of work and the stages it waits for."""
    name: str
    action: StageAction
    after: Tuple[str, ...] = ()


@dataclass
class StageResult:
    """Result of one stage."""

    name: str
    status: StageStatus = StageStatus.NOT_RUN
    output: Any = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    def start(self):
        self.started_at = datetime.now(timezone.utc)

    def complete(self, status: StageStatus, output: Any = None, error: Optional[str] = None):
        """Mark the stage as finished and calculate duration."""
        self.status = status
        self.output = output
        self.error = error
        self.completed_at = datetime.now(timezone.utc)
        if self.started_at:
            self.duration_seconds = (self.completed_at - self.started_at).total_seconds()


@dataclass
class RunReport:
    """Results of all stages of a run, in declaration order."""

    results: Dict[str, StageResult] = field(default_factory=dict)

    def __getitem__(self, name: str) -> StageResult:
        return self.results[name]

    def status(self, name: str) -> StageStatus:
        return self.results[name].status

    def succeeded(self, name: str) -> bool:
        return self.status(name) == StageStatus.SUCCESS

    def output(self, name: str) -> Any:
        return self.results[name].output

    def by_status(self, status: StageStatus) -> List[str]:
        return [name for name, result in self.results.items() if result.status == status]

    @property
    def ok(self) -> bool:
        """True when no stage failed."""
        return not self.by_status(StageStatus.FAILED)


class Pipeline:
    """Runs a fixed stage graph once per call to run()."""

    def __init__(self, stages: Iterable[Stage]):
        self.stages: List[Stage] = list(stages)
        self._validate()

    def _validate(self):
        names = [stage.name for stage in self.stages]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise PipelineError(f"Duplicate stage names: {', '.join(sorted(duplicates))}")

        known = set(names)
        for stage in self.stages:
            unknown = [dep for dep in stage.after if dep not in known]
            if unknown:
                raise PipelineError(f"Stage '{stage.name}' depends on unknown stages: {', '.join(unknown)}")

        # Kahn's algorithm; anything left over sits on a cycle
        remaining = {stage.name: set(stage.after) for stage in self.stages}
        while remaining:
            ready = [name for name, deps in remaining.items() if not deps]
            if not ready:
                raise PipelineError(f"Stage graph has a cycle through: {', '.join(sorted(remaining))}")
            for name in ready:
                del remaining[name]
            for deps in remaining.values():
                deps.difference_update(ready)

    async def run(self) -> RunReport:
        """Run every stage whose trigger condition becomes true."""
        report = RunReport({stage.name: StageResult(stage.name) for stage in self.stages})
        outputs: Dict[str, Any] = {}
        fired = set()
        running: Dict[asyncio.Task, Stage] = {}

        def fire_ready():
            for stage in self.stages:
                if stage.name in fired:
                    continue
                if all(dep in outputs for dep in stage.after):
                    fired.add(stage.name)
                    view = MappingProxyType(dict(outputs))
                    task = asyncio.create_task(self._run_stage(stage, view, report[stage.name]))
                    running[task] = stage

        fire_ready()
        while running:
            done, _ = await asyncio.wait(list(running), return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                stage = running.pop(task)
                result = report[stage.name]
                if result.status == StageStatus.SUCCESS:
                    outputs[stage.name] = result.output
            fire_ready()

        not_run = report.by_status(StageStatus.NOT_RUN)
        if not_run:
            logger.info(f"Stages not run: {', '.join(not_run)}")
        return report

    async def _run_stage(self, stage: Stage, outputs: Mapping[str, Any], result: StageResult):
        logger.debug(f"Starting stage {stage.name}")
        result.start()
        try:
            output = await stage.action(outputs)
        except (StageSkipped, SnapshotDecodeError) as e:
            logger.info(f"Stage {stage.name} skipped: {e}")
            result.complete(StageStatus.SKIPPED, error=str(e))
        except Exception as e:
            logger.error(f"Stage {stage.name} failed: {e}")
            result.complete(StageStatus.FAILED, error=str(e))
        else:
            result.complete(StageStatus.SUCCESS, output=output)
            logger.info(f"Stage {stage.name} finished in {result.duration_seconds:.2f}s")

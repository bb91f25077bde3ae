"""CPU-load-adaptive admission of encode jobs.

The scheduler owns a FIFO of pending jobs and a set of running ffmpeg
processes. Every ``poll_interval`` seconds it reaps finished processes and,
when the sampled load is under ``threshold``, admits the next job. With
nothing in flight a job is admitted regardless of the sample, so a machine
pinned by other work still makes progress.

Admission is one job per tick: a freshly started encoder needs a moment
before its load shows up in the sample.
"""

import logging
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional, Protocol, Sequence, Tuple
from medorg.domain.events import JobCompleted, JobFailed, JobInterrupted, JobStarted
from medorg.domain.models import EncodeJob, JobStatus
from medorg.infrastructure.cancellation import CancellationToken
from medorg.infrastructure.cpu_monitor import LoadSampler
from medorg.infrastructure.event_bus import EventBus
from medorg.infrastructure.ffmpeg import EncodeProcess
from medorg.infrastructure.file_ops import ensure_directory, move_file, move_into, remove_if_exists

POST_ENCODE_ACTIONS = ("none", "move_source", "move_output")


class EncodeRunner(Protocol):
    def start_encode(self, job: EncodeJob) -> EncodeProcess:
        ...


class AdaptiveJobScheduler:
    def __init__(
        self,
        runner: EncodeRunner,
        sampler: LoadSampler,
        token: CancellationToken,
        fail_dir: Path,
        threshold: float = 95.0,
        poll_interval: float = 0.5,
        event_bus: Optional[EventBus] = None,
        post_encode_action: str = "none",
        finish_dir: Optional[Path] = None,
        terminate_grace: float = 3.0,
    ):
        if post_encode_action not in POST_ENCODE_ACTIONS:
            raise ValueError(f"Unknown post-encode action: {post_encode_action!r}")
        if post_encode_action != "none" and finish_dir is None:
            raise ValueError(f"post_encode_action={post_encode_action!r} needs finish_dir")
        self.runner = runner
        self.sampler = sampler
        self.token = token
        self.fail_dir = Path(fail_dir)
        self.threshold = threshold
        self.poll_interval = poll_interval
        self.event_bus = event_bus or EventBus()
        self.post_encode_action = post_encode_action
        self.finish_dir = Path(finish_dir) if finish_dir is not None else None
        self.terminate_grace = terminate_grace
        self.admissions = 0
        self.logger = logging.getLogger(__name__)

    def run(self, jobs: Sequence[EncodeJob]) -> List[EncodeJob]:
        """Runs ``jobs`` to completion or cancellation. Returns them with final statuses.

        Jobs never admitted keep PENDING.
        """
        jobs = list(jobs)
        if self.token.is_set():
            self.logger.info("SCHED_CANCELLED: token set before start, nothing admitted")
            return jobs

        pending: Deque[EncodeJob] = deque(jobs)
        running: List[Tuple[EncodeJob, EncodeProcess]] = []
        self.logger.info(f"SCHED_START: {len(pending)} jobs threshold={self.threshold:.0f}% poll={self.poll_interval}s")

        try:
            while pending or running:
                self._reap(running)
                if self.token.is_set():
                    break
                if pending:
                    self._admit_next(pending, running)
                if not pending and not running:
                    break
                self.token.wait(self.poll_interval)
        finally:
            if running:
                self._interrupt(running)

        if self.token.is_set():
            self.logger.info(f"SCHED_CANCELLED: {len(pending)} jobs left pending")
        self.logger.info(f"SCHED_END: admitted={self.admissions}")
        return jobs

    def _admit_next(self, pending: Deque[EncodeJob], running: List[Tuple[EncodeJob, EncodeProcess]]) -> None:
        if running:
            load = self.sampler.load() * 100.0
            if load >= self.threshold:
                self.logger.debug(f"SCHED_HOLD: load={load:.1f}% in_flight={len(running)}")
                return
        job = pending.popleft()
        process = self._start(job)
        if process is not None:
            running.append((job, process))

    def _start(self, job: EncodeJob) -> Optional[EncodeProcess]:
        self.admissions += 1
        job.status = JobStatus.PROCESSING
        # A temp file left by an earlier crash would be overwritten anyway
        remove_if_exists(job.temp_path)
        try:
            process = self.runner.start_encode(job)
        except OSError as e:
            self._fail(job, f"cannot launch ffmpeg: {e}", None)
            return None
        self.logger.info(f"JOB_START: {job.source_path.name} pid={process.pid}")
        self.event_bus.publish(JobStarted(job=job))
        return process

    def _reap(self, running: List[Tuple[EncodeJob, EncodeProcess]]) -> None:
        for entry in list(running):
            job, process = entry
            returncode = process.poll()
            if returncode is None:
                continue
            running.remove(entry)
            job.returncode = returncode
            if returncode == 0:
                self._complete(job)
            elif self.token.is_set():
                # Exited because of the same interrupt that set the token
                self._mark_interrupted(job)
            else:
                tail = process.error_tail()
                message = f"ffmpeg exited with code {returncode}"
                if tail:
                    message += f": {tail.splitlines()[-1]}"
                self._fail(job, message, returncode)

    def _complete(self, job: EncodeJob) -> None:
        if not job.temp_path.exists():
            self._fail(job, "ffmpeg reported success but wrote no output", job.returncode)
            return
        try:
            move_file(job.temp_path, job.output_path)
        except FileExistsError:
            self._fail(job, f"{job.output_path.name} appeared during encode", job.returncode, keep_output=True)
            return
        except OSError as e:
            self._fail(job, f"cannot finalize output: {e}", job.returncode)
            return

        job.status = JobStatus.COMPLETED
        self.logger.info(f"JOB_DONE: {job.source_path.name} -> {job.output_path.name}")
        self._post_encode(job)
        self.event_bus.publish(JobCompleted(job=job))

    def _post_encode(self, job: EncodeJob) -> None:
        if self.post_encode_action == "none":
            return
        try:
            finish_dir = ensure_directory(self.finish_dir)
            if self.post_encode_action == "move_source":
                moved = move_into(job.source_path, finish_dir)
                self.logger.info(f"POST_MOVE: source {job.source_path.name} -> {moved}")
            else:
                moved = move_into(job.output_path, finish_dir)
                self.logger.info(f"POST_MOVE: output {job.output_path.name} -> {moved}")
                job.output_path = moved
        except OSError as e:
            # The encode itself succeeded; leave files where they are
            self.logger.error(f"POST_MOVE_FAILED: {job.source_path.name}: {e}")

    def _fail(self, job: EncodeJob, message: str, returncode: Optional[int], keep_output: bool = False) -> None:
        remove_if_exists(job.temp_path)
        if not keep_output:
            remove_if_exists(job.output_path)
        job.status = JobStatus.FAILED
        job.returncode = returncode
        job.error_message = message
        self.logger.error(f"JOB_FAILED: {job.source_path.name}: {message}")

        ensure_directory(self.fail_dir)
        try:
            moved = move_into(job.source_path, self.fail_dir)
            self.logger.info(f"FAIL_MOVE: {job.source_path.name} -> {moved}")
        except OSError as e:
            self.logger.error(f"FAIL_MOVE_FAILED: {job.source_path.name}: {e}")
        self.event_bus.publish(JobFailed(job=job, error_message=message))

    def _interrupt(self, running: List[Tuple[EncodeJob, EncodeProcess]]) -> None:
        self.logger.info(f"SCHED_INTERRUPT: terminating {len(running)} running encodes")
        for job, process in running:
            try:
                process.terminate(grace=self.terminate_grace)
            except OSError as e:
                self.logger.warning(f"Failed to terminate pid {process.pid}: {e}")
            self._mark_interrupted(job)
        running.clear()

    def _mark_interrupted(self, job: EncodeJob) -> None:
        remove_if_exists(job.temp_path)
        job.status = JobStatus.INTERRUPTED
        job.error_message = "interrupted"
        self.logger.info(f"JOB_INTERRUPTED: {job.source_path.name}")
        self.event_bus.publish(JobInterrupted(job=job))

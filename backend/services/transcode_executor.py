"""
Transcode Executor

Drives ffmpeg for the two generation modes:

Batch HLS (queued, background):
    resolve the cache directory, skip when a published manifest already exists
    and overwriting is off, run ffmpeg with its output in the progress log,
    decide success from the exit code plus the log's summary markers, then
    publish the manifest by renaming it from its partial name.

On-demand proxy (synchronous, request path):
    return the cached <cache_key>.mp4 when present; otherwise serialize on the
    cache key, stream ffmpeg's stdout into <cache_key>.mp4.part, validate the
    result and publish it by renaming.

Each mode writes its own progress record; failures are recorded there with
the diagnostic tail. Partial
HLS output is left in place for inspection; a failed proxy .part file is
removed so it can never be served.
"""
import os
from datetime import datetime
from pathlib import Path
from typing import Optional
import logging

from config.engine_config import EngineConfig
from constants import (
    ArtifactKinds,
    CacheLayout,
    FailureCategory,
    NotificationEvents,
    ProgressModes,
    ProgressStatus,
    TranscodeDefaults,
)
from domain.value_objects import ArtifactRef, CachePolicy, SourceFile
from exceptions import (
    OutputDirectoryUnavailableError,
    OutputInvalidError,
    ProcessFailedError,
    SourceNotReadableError,
    TranscodeError,
)
from services.artifact_server import ProxyEvictor
from services.cache_locator import CacheLocator
from services.failure_classifier import FailureClassifier
from services.interfaces import IFileStore, INotificationSink, IProcessRunner
from services.progress_tracker import ProgressStore, split_lines
from utils.ffmpeg_helper import (
    build_adaptive_hls_command,
    build_hls_command,
    build_proxy_command,
    get_ffmpeg_path,
    redact_command,
)
from utils.keyed_lock import KeyedLocks
from workers.ffmpeg_runner import has_success_marker

logger = logging.getLogger(__name__)


def validate_proxy_output(path: Path) -> None:
    """
    Check a proxy file before it is published.

    Raises:
        OutputInvalidError: If the file is missing, too small or not an MP4
    """
    if not path.is_file():
        raise OutputInvalidError("Transcoder produced no output file")
    size = path.stat().st_size
    if size < TranscodeDefaults.MIN_OUTPUT_BYTES:
        raise OutputInvalidError(
            f"Transcoder output too small ({size} bytes)",
            size=size,
        )
    with open(path, 'rb') as f:
        header = f.read(TranscodeDefaults.SIGNATURE_PROBE_BYTES)
    if TranscodeDefaults.MP4_SIGNATURE not in header:
        raise OutputInvalidError("Transcoder output is not a valid MP4 file", size=size)


class TranscodeExecutor:
    """Runs HLS and proxy generation for source files"""

    def __init__(
        self,
        config: EngineConfig,
        file_store: IFileStore,
        locator: CacheLocator,
        progress_store: ProgressStore,
        runner: IProcessRunner,
        notifier: Optional[INotificationSink] = None,
        evictor: Optional[ProxyEvictor] = None,
        key_locks: Optional[KeyedLocks] = None,
    ):
        self.config = config
        self.file_store = file_store
        self.locator = locator
        self.progress_store = progress_store
        self.runner = runner
        self.notifier = notifier
        self.evictor = evictor
        self.key_locks = key_locks or KeyedLocks()
        self.ffmpeg = get_ffmpeg_path(config.ffmpeg_path)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_readable(self, source: SourceFile) -> Path:
        local = self.file_store.local_path(source.owner, source.path)
        if not self.file_store.is_readable(source.owner, source.path):
            raise SourceNotReadableError(source.owner, source.path)
        return local

    def _notify(self, owner: str, event_type: str, subject: str, payload: dict) -> None:
        if self.notifier is not None:
            self.notifier.notify(owner, event_type, subject, payload)

    def _record_failure(self, source: SourceFile, error: Exception, job_id: Optional[str],
                        mode: str = ProgressModes.HLS) -> FailureCategory:
        category, cleaned = FailureClassifier.classify(error)
        output_tail = error.output_tail if isinstance(error, TranscodeError) else ""
        self.progress_store.update(
            source.cache_key,
            mode,
            status=ProgressStatus.FAILED,
            owner=source.owner,
            message=cleaned,
            error=f"{error}\n{output_tail}".strip(),
            job_id=job_id,
        )
        logger.error(f"❌ Transcode failed for {source} [{category.value}]: {error}")
        return category

    def _log_tail_text(self, cache_key: str) -> str:
        _head, tail = self.progress_store.read_log(cache_key)
        return tail

    @staticmethod
    def _tail(text: str) -> str:
        return '\n'.join(split_lines(text)[-TranscodeDefaults.STDERR_TAIL_LINES:])

    # ------------------------------------------------------------------
    # Batch HLS
    # ------------------------------------------------------------------

    def use_adaptive(self, policy: CachePolicy) -> bool:
        return self.config.adaptive_hls and len(policy.resolutions) >= 2

    def generate_hls(self, source: SourceFile, policy: CachePolicy, job_id: Optional[str] = None) -> ArtifactRef:
        """
        Generate (or reuse) the HLS cache of a source file.

        Safe to run more than once for the same job: with overwrite off, an
        existing published manifest makes this a no-op.

        Raises:
            OutputDirectoryUnavailableError, SourceNotReadableError,
            SpawnFailedError, ProcessFailedError, OutputInvalidError,
            TranscodeTimeoutError
        """
        cache_key = source.cache_key
        cache_path = self.locator.resolve(source, policy)

        with self.key_locks.hold(f"hls:{source.owner}:{cache_path}"):
            try:
                output_dir = self.file_store.make_dirs(source.owner, cache_path)

                if not policy.overwrite_existing:
                    existing = self.locator.published_manifest(source.owner, cache_path)
                    if existing:
                        logger.info(f"♻️ HLS cache already present for {source} at {cache_path}, skipping")
                        self.progress_store.update(
                            cache_key,
                            status=ProgressStatus.COMPLETED,
                            owner=source.owner,
                            progress=100.0,
                            message="Cache already exists",
                            error=None,
                            job_id=job_id,
                        )
                        return self.locator.hls_ref(source, cache_path, existing)

                input_path = self._require_readable(source)
            except (TranscodeError, SourceNotReadableError) as e:
                self._record_failure(source, e, job_id)
                self.notify_failure(source.owner, source.path, source.cache_key, e, job_id)
                raise

            adaptive = self.use_adaptive(policy)
            manifest = CacheLayout.MASTER_MANIFEST if adaptive else CacheLayout.LEGACY_MANIFEST
            partial_manifest = output_dir / CacheLayout.partial_name(manifest)

            if adaptive:
                cmd = build_adaptive_hls_command(self.ffmpeg, input_path, output_dir, policy.resolutions,
                                                 self.config.segment_duration)
            else:
                cmd = build_hls_command(self.ffmpeg, input_path, output_dir, self.config.segment_duration)

            log_path = self.progress_store.reset_log(cache_key)
            self.progress_store.update(
                cache_key,
                status=ProgressStatus.PROCESSING,
                owner=source.owner,
                progress=0.0,
                message="Generating HLS cache",
                error=None,
                job_id=job_id,
                started_at=datetime.utcnow().isoformat(),
            )
            logger.info(f"🎬 Generating {'adaptive' if adaptive else 'single-rendition'} HLS for {source} -> {cache_path}")

            try:
                returncode = self.runner.run_to_log(cmd, log_path, self.config.transcode_timeout_seconds)
                log_text = self._log_tail_text(cache_key)

                if returncode != 0 and not has_success_marker(log_text):
                    raise ProcessFailedError(returncode, command=redact_command(cmd), output_tail=self._tail(log_text))
                if returncode != 0:
                    logger.warning(f"Transcoder exited with {returncode} but reported success for {source}")

                if not partial_manifest.is_file():
                    raise OutputInvalidError(
                        f"Transcoder finished without writing {manifest}",
                        command=redact_command(cmd),
                        output_tail=self._tail(log_text),
                    )
                os.replace(partial_manifest, output_dir / manifest)
            except TranscodeError as e:
                # Partial segments stay on disk for inspection
                self._record_failure(source, e, job_id)
                self.notify_failure(source.owner, source.path, source.cache_key, e, job_id)
                raise

            self.progress_store.update(
                cache_key,
                status=ProgressStatus.COMPLETED,
                owner=source.owner,
                progress=100.0,
                message="Cache generation completed",
                error=None,
                job_id=job_id,
            )
            logger.info(f"✅ HLS cache published for {source}: {cache_path}/{manifest}")

            ref = self.locator.hls_ref(source, cache_path, manifest)
            if policy.notify_completion:
                self._notify(source.owner, NotificationEvents.CACHE_GENERATED, source.path, {
                    "cache_key": cache_key,
                    "job_id": job_id,
                    "manifest_path": ref.manifest_path,
                })
            return ref

    def notify_failure(self, owner: str, path: str, cache_key: Optional[str], error: Exception,
                       job_id: Optional[str]) -> None:
        """Send CACHE_FAILED with the classified category of error"""
        category, cleaned = FailureClassifier.classify(error)
        self._notify(owner, NotificationEvents.CACHE_FAILED, path, {
            "cache_key": cache_key,
            "job_id": job_id,
            "category": category.value,
            "label": FailureCategory.get_ui_label(category),
            "hint": FailureCategory.get_recovery_hint(category),
            "message": cleaned,
        })

    # ------------------------------------------------------------------
    # On-demand proxy
    # ------------------------------------------------------------------

    def get_or_create_proxy(self, source: SourceFile, force: bool = False) -> ArtifactRef:
        """
        Return the proxy MP4 of a source file, transcoding it on a miss.

        Concurrent callers for the same cache key run ffmpeg once; the others
        wait for the lock and then reuse the published file.

        Raises:
            SourceNotReadableError, SpawnFailedError, ProcessFailedError,
            OutputInvalidError, OutputDirectoryUnavailableError, TranscodeTimeoutError
        """
        if self.evictor is not None:
            self.evictor.sweep()

        if not force:
            hit = self.locator.find_proxy(source)
            if hit is not None:
                logger.debug(f"Proxy cache hit for {source}")
                self._ensure_proxy_record(source)
                return hit

        cache_key = source.cache_key
        with self.key_locks.hold(f"proxy:{cache_key}"):
            if not force:
                hit = self.locator.find_proxy(source)
                if hit is not None:
                    logger.info(f"Proxy for {source} was generated by a concurrent request, reusing it")
                    self._ensure_proxy_record(source)
                    return hit

            final_path = self.locator.proxy_path(cache_key)
            part_path = self.locator.proxy_partial_path(cache_key)
            try:
                input_path = self._require_readable(source)
                try:
                    final_path.parent.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise OutputDirectoryUnavailableError(str(final_path.parent), str(e))
            except (TranscodeError, SourceNotReadableError) as e:
                self._record_failure(source, e, None, ProgressModes.PROXY)
                raise
            self._discard(part_path)

            cmd = build_proxy_command(self.ffmpeg, input_path)
            log_path = self.progress_store.reset_log(cache_key, ProgressModes.PROXY)
            self.progress_store.update(
                cache_key,
                ProgressModes.PROXY,
                status=ProgressStatus.PROCESSING,
                owner=source.owner,
                progress=0.0,
                message="Generating proxy",
                error=None,
                started_at=datetime.utcnow().isoformat(),
            )
            logger.info(f"🎬 Generating proxy for {source} -> {final_path.name}")

            try:
                result = self.runner.run_to_file(cmd, part_path, log_path, self.config.proxy_timeout_seconds)
                if result.returncode != 0 and not has_success_marker(result.stderr_tail):
                    raise ProcessFailedError(result.returncode, command=redact_command(cmd),
                                             output_tail=result.stderr_tail)
                try:
                    validate_proxy_output(part_path)
                except OutputInvalidError as e:
                    e.details.update({"command": redact_command(cmd), "output_tail": result.stderr_tail})
                    raise
                os.replace(part_path, final_path)
            except TranscodeError as e:
                self._discard(part_path)
                self._record_failure(source, e, None, ProgressModes.PROXY)
                raise

            self.progress_store.update(
                cache_key,
                ProgressModes.PROXY,
                status=ProgressStatus.COMPLETED,
                owner=source.owner,
                progress=100.0,
                message="Proxy ready",
                error=None,
            )
            logger.info(f"✅ Proxy published for {source}: {final_path.name} ({final_path.stat().st_size} bytes)")
            return ArtifactRef(kind=ArtifactKinds.PROXY, owner=source.owner, cache_key=cache_key, local_path=final_path)

    def _ensure_proxy_record(self, source: SourceFile) -> None:
        """A proxy found on disk without a record (progress dir wiped) is re-claimed for its owner"""
        if self.progress_store.load(source.cache_key, ProgressModes.PROXY) is None:
            self.progress_store.update(
                source.cache_key,
                ProgressModes.PROXY,
                status=ProgressStatus.COMPLETED,
                owner=source.owner,
                progress=100.0,
                message="Proxy ready",
            )

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")

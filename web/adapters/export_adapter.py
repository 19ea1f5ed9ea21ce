from __future__ import annotations

import logging

from cliptr.src.errors import CliptrError

logger = logging.getLogger(__name__)


class ExportAdapter:
    """Run MediaExporter calls as JobManager jobs on the executor."""

    @staticmethod
    def run_export(job, exporter, session_id: str, name: str | None = None) -> dict:
        job.start()
        try:
            export = exporter.export_session(session_id, name=name)
            job.complete(export.to_dict())
        except CliptrError as e:
            logger.error(f"Export of session {session_id} failed: {e}")
            job.fail(str(e), getattr(e, "diagnostics", None))
        except Exception as e:
            logger.exception(f"Export of session {session_id} failed")
            job.fail(str(e))
        return job.to_dict()

    @staticmethod
    def run_compilation(job, exporter, clip_ids: list[str], name: str | None = None) -> dict:
        job.start()
        try:
            compilation = exporter.create_compilation(clip_ids, name=name)
            job.complete(compilation.to_dict())
        except CliptrError as e:
            logger.error(f"Compilation of {len(clip_ids)} clips failed: {e}")
            job.fail(str(e), getattr(e, "diagnostics", None))
        except Exception as e:
            logger.exception("Compilation failed")
            job.fail(str(e))
        return job.to_dict()

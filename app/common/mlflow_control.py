import os
from contextlib import contextmanager
from typing import Any, Callable, Optional

import mlflow

from app.ai_service.utils.logger import get_logger

logger = get_logger(__name__)


def _mlflow_disabled() -> bool:
    return os.getenv("LINK_AI_ENV") == "test"


@contextmanager
def mlflow_context(run_name: str | None = None):
    """
    MLflow run lifecycle handler.

    Starts a run when none is active, reuses an active one otherwise,
    and always ends runs it started. Skipped entirely in tests.

    Args:
        run_name (str | None):
            Optional MLflow run name for easier identification in the UI.
    """
    if _mlflow_disabled():
        logger.debug("MLflow disabled (test environment)")
        yield None
        return

    started_here = False
    run = None

    try:
        active_run = mlflow.active_run()

        if active_run is None:
            run = mlflow.start_run(run_name=run_name)
            started_here = True
            logger.info(
                "MLflow run started",
                extra={"run_id": run.info.run_id, "run_name": run_name},
            )
        else:
            run = active_run
    except Exception:
        logger.warning("MLflow run could not be started", exc_info=True)
        run = None

    try:
        yield run
    finally:
        if started_here:
            try:
                if mlflow.active_run():
                    mlflow.end_run()
                    logger.info(
                        "MLflow run ended",
                        extra={"run_id": run.info.run_id if run else None},
                    )
            except Exception:
                logger.exception("Failed to end MLflow run")


def mlflow_safe(
    func: Callable[..., Any],
    *args: Any,
    swallow: bool = True,
    **kwargs: Any,
) -> Optional[Any]:
    """
    Execute an MLflow call without letting it break the request.

    No-op when LINK_AI_ENV is "test".

    Args:
        func: The MLflow function to execute (e.g. mlflow.log_metric).
        swallow: Re-raise failures when False.

    Returns:
        The MLflow call's return value, or None when skipped or failed.
    """
    if _mlflow_disabled():
        return None

    try:
        return func(*args, **kwargs)

    except Exception:
        logger.warning(
            "MLflow call failed: %s",
            getattr(func, "__name__", repr(func)),
            exc_info=True,
        )

        if not swallow:
            raise

        return None

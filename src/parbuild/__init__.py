"""
parbuild - coordinate independent build jobs across worker processes.

One worker process per target, a global concurrency cap on builds,
all-or-nothing one-shot runs and indefinite watch runs.

    from parbuild import run_build
    summary = await run_build(["/src/a", "/src/b"], concurrency=2)
"""

__version__ = "0.1.0"

from parbuild.coordinator import Coordinator, run_build  # noqa: E402
from parbuild.models import BuildOutcome, RunState, RunSummary, WorkerRecord  # noqa: E402

__all__ = [
    "BuildOutcome",
    "Coordinator",
    "RunState",
    "RunSummary",
    "WorkerRecord",
    "__version__",
    "run_build",
]

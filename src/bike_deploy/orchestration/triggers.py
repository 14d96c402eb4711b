"""Map CI events to the pipeline stages they run."""
from typing import Optional, Tuple

from bike_deploy.models import FULL_PIPELINE, TEST_ONLY, PipelineStage


def branch_from_ref(ref: Optional[str]) -> Optional[str]:
    if not ref:
        return None
    prefix = "refs/heads/"
    return ref[len(prefix):] if ref.startswith(prefix) else ref


def resolve_stages(event_name: str, ref: Optional[str], deploy_branch: str = "main") -> Tuple[PipelineStage, ...]:
    """Push to the deploy branch runs everything; any other event only tests."""
    if event_name == "push" and branch_from_ref(ref) == deploy_branch:
        return FULL_PIPELINE
    if event_name in ("push", "pull_request"):
        return TEST_ONLY
    raise ValueError(f"Unsupported trigger event: {event_name}")

# ============================================================================
# runbook/persistence/__init__.py
# Resume store: stored pose and repo snapshot per book title
# ============================================================================

from runbook.persistence.store import PoseRecord, Repo, RepoRecord, StoredPose, atomic_write_json, atomic_write_text

__all__ = ["PoseRecord", "Repo", "RepoRecord", "StoredPose", "atomic_write_json", "atomic_write_text"]

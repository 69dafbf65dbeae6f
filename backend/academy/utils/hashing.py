"""
Hashing Utilities — deterministic SHA-256 keys for duplicate suppression.
"""
import hashlib
import json


def generate_hash(data: dict) -> str:
    """Generate a SHA-256 hash of a dictionary (deterministic, sorted keys)."""
    canonical = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def idempotency_key(parent_id: str, course_id: str, flow_key: str, run_id: str) -> str:
    """Key for the enrollment created by one wizard run of one guardian for one course.

    Re-submitting the guardian step (double click, retry after a timeout)
    produces the same key, so the store hands back the first enrollment.
    A new run of the wizard carries a new ``run_id`` and gets a new key.
    """
    return generate_hash({"parent": parent_id, "course": course_id, "flow": flow_key, "run": run_id})

import itertools
import time
import uuid

_sequence = itertools.count(1)


def generate_correlation_id(prefix: str = "wp") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:9]}-{int(time.time() * 1000)}"


def build_idempotency_key(document_id: str, signer_email: str) -> str:
    """Key for one submission attempt.

    Built once per submit and reused for every retry of that submit. The millisecond
    timestamp plus a process-wide counter keeps two attempts in the same millisecond
    apart.
    """
    return f"signing-{document_id}-{signer_email}-{int(time.time() * 1000)}-{next(_sequence)}"

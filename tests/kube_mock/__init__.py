from .documents import JWT_SECRET, kubenova_doc, node, nodeport_web, valid_spec
from .store import FakeStore, conflict, not_found

__all__ = [
    "FakeStore",
    "JWT_SECRET",
    "conflict",
    "kubenova_doc",
    "node",
    "nodeport_web",
    "not_found",
    "valid_spec",
]

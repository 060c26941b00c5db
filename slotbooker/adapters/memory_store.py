"""
In-memory document store for tests, demos and the CLI.
"""

from __future__ import annotations

import copy
import json
import logging
import operator
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..domain.exceptions import ConcurrentWriteError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

Predicate = Tuple[str, str, Any]

REVISION_FIELD = "revision"

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda field_value, values: field_value in values,
}


def matches(doc: Dict[str, Any], predicates: Sequence[Predicate]) -> bool:
    """Check a document against ``(field, op, value)`` predicates (logical AND)."""
    for field_name, op, value in predicates:
        compare = _OPERATORS.get(op)
        if compare is None:
            raise ValidationError(f"Unsupported query operator '{op}'")
        field_value = doc.get(field_name)
        if field_value is None:
            return False
        try:
            if not compare(field_value, value):
                return False
        except TypeError:
            return False
    return True


class InMemoryDocumentStore:
    """
    Key-addressed collections held in a dict.

    Documents are deep-copied on the way in and out so callers only ever see
    snapshots. All methods are coroutines to match the store protocol; none of
    them awaits, which makes each call atomic on a single event loop.
    """

    def __init__(self, collections: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = copy.deepcopy(collections or {})

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def put(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> None:
        self._collection(collection)[doc_id] = copy.deepcopy(doc)

    async def update(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> None:
        docs = self._collection(collection)
        if doc_id not in docs:
            raise NotFoundError(f"{collection}/{doc_id} not found")
        docs[doc_id].update(copy.deepcopy(patch))

    async def delete(self, collection: str, doc_id: str) -> None:
        self._collection(collection).pop(doc_id, None)

    async def query(self, collection: str, predicates: Sequence[Predicate] = ()) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(doc)
            for doc in self._collection(collection).values()
            if matches(doc, predicates)
        ]

    async def put_if_revision(
        self,
        collection: str,
        doc_id: str,
        doc: Dict[str, Any],
        revision_collection: str,
        revision_id: str,
        expected: int,
    ) -> None:
        """
        Store ``doc`` and bump the ``revision`` field of the counter document.

        A missing counter counts as revision 0. Check, bump and write happen
        without awaiting in between.

        Raises:
            ConcurrentWriteError: If the stored revision differs from ``expected``
        """
        counters = self._collection(revision_collection)
        current = counters.get(revision_id, {}).get(REVISION_FIELD) or 0
        if current != expected:
            raise ConcurrentWriteError(
                f"{revision_collection}/{revision_id} is at revision {current}, expected {expected}"
            )
        counters.setdefault(revision_id, {})[REVISION_FIELD] = expected + 1
        self._collection(collection)[doc_id] = copy.deepcopy(doc)

    def dump(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        return copy.deepcopy(self._collections)

    def save_fixture(self, data_file: Path) -> None:
        with open(data_file, "w", encoding="utf-8") as f:
            json.dump(self._collections, f, indent=2, sort_keys=True)

    @classmethod
    def from_documents(cls, collections: Dict[str, Iterable[Dict[str, Any]]]) -> "InMemoryDocumentStore":
        """Build a store from ``{collection: [doc, ...]}``; each doc needs an ``id``."""
        keyed: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for name, docs in collections.items():
            keyed[name] = {}
            for doc in docs:
                if "id" not in doc:
                    raise ValidationError(f"Document in '{name}' has no id")
                keyed[name][str(doc["id"])] = doc
        return cls(keyed)

    @classmethod
    def load_fixture(cls, data_file: Path) -> "InMemoryDocumentStore":
        """
        Load a JSON fixture.

        The file holds either ``{collection: [doc, ...]}`` or the keyed form
        written by ``save_fixture``. A missing file yields an empty store.
        """
        if not data_file.exists():
            logger.info("Fixture %s not found, starting with an empty store", data_file)
            return cls()

        try:
            with open(data_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in {data_file}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Fixture file must contain a mapping at the root level.")

        if all(isinstance(docs, list) for docs in data.values()):
            return cls.from_documents(data)
        return cls(data)

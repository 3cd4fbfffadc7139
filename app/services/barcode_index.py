"""Barcode lookup over the active packagings of a tree."""
from typing import Dict, Iterable

from app.exceptions import ConflictError, InvalidArgumentError, NotFoundError
from app.services.packaging_nodes import PackagingNode


def normalize_barcode(value) -> str:
    if value is None:
        return ''
    return str(value).strip()


class BarcodeIndex:
    """
    Read-only map of barcode -> packaging node.

    Built from active nodes only and rebuilt whenever the tree changes.
    Two active nodes sharing a barcode is a ConflictError.
    """

    def __init__(self, nodes: Iterable[PackagingNode]):
        self._by_code: Dict[str, PackagingNode] = {}
        for node in nodes:
            code = normalize_barcode(node.barcode)
            if not node.is_active or not code:
                continue
            existing = self._by_code.get(code)
            if existing is not None and existing.id != node.id:
                raise ConflictError(
                    f"Barcode {code} is used by packagings {existing.id} and {node.id}",
                    {'barcode': code},
                )
            self._by_code[code] = node

    def __len__(self):
        return len(self._by_code)

    def __contains__(self, barcode):
        return normalize_barcode(barcode) in self._by_code

    def lookup(self, barcode: str) -> PackagingNode:
        code = normalize_barcode(barcode)
        if not code:
            raise InvalidArgumentError('barcode is required')
        node = self._by_code.get(code)
        if node is None:
            raise NotFoundError(f"Packaging not found for barcode: {code}", {'barcode': code})
        return node

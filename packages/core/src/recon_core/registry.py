"""In-memory document registry.

Holds the current snapshot of every document and enforces the identity
rules: one reconciliation per (account, period), one filing per
(company, filing type, period). ``replace`` performs an optimistic version
check so that two writers working from the same base snapshot cannot both
store their change; the second one gets ``StaleDocumentError`` and must
reapply its mutation to the newer snapshot.
"""

from typing import Optional, Union

import structlog

from recon_core.exceptions import DuplicateDocumentError, StaleDocumentError
from recon_core.models.documents import FilingDocument, FilingType, ReconciliationDocument

logger = structlog.get_logger(__name__)

Document = Union[ReconciliationDocument, FilingDocument]


def _identity_key(document: Document) -> tuple[str, ...]:
    return (type(document).__name__, *document.identity)


class DocumentRegistry:
    """Current snapshots keyed by document id and by identity."""

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._by_identity: dict[tuple[str, ...], str] = {}

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._documents

    def create(self, document: Document) -> Document:
        """
        Register a new document.

        Raises:
            DuplicateDocumentError: If a document with the same identity (or
                id) already exists.
        """
        key = _identity_key(document)
        if key in self._by_identity or document.document_id in self._documents:
            logger.warning("duplicate_document", identity=list(document.identity))
            raise DuplicateDocumentError(
                f"{type(document).__name__} already exists for {'/'.join(document.identity)}",
                identity=document.identity,
            )
        self._documents[document.document_id] = document
        self._by_identity[key] = document.document_id
        logger.info("document_registered", document_id=document.document_id, identity=list(document.identity))
        return document

    def replace(self, document: Document) -> Document:
        """
        Store a new snapshot of an existing document.

        The snapshot must carry the version currently stored; the stored copy
        gets the next version number.

        Raises:
            KeyError: If the document was never registered.
            StaleDocumentError: If the stored version has moved on.
            DuplicateDocumentError: If the new identity collides with another
                document.
        """
        current = self._documents[document.document_id]
        if document.version != current.version:
            logger.warning(
                "stale_document",
                document_id=document.document_id,
                expected_version=document.version,
                actual_version=current.version,
            )
            raise StaleDocumentError(
                "Document was changed by another writer",
                document_id=document.document_id,
                expected_version=document.version,
                actual_version=current.version,
            )

        old_key = _identity_key(current)
        new_key = _identity_key(document)
        if new_key != old_key:
            if new_key in self._by_identity:
                raise DuplicateDocumentError(
                    f"{type(document).__name__} already exists for {'/'.join(document.identity)}",
                    identity=document.identity,
                )
            del self._by_identity[old_key]
            self._by_identity[new_key] = document.document_id

        stored = document.model_copy(update={"version": current.version + 1})
        self._documents[document.document_id] = stored
        logger.debug("document_replaced", document_id=document.document_id, version=stored.version)
        return stored

    def get(self, document_id: str) -> Optional[Document]:
        return self._documents.get(document_id)

    def find_reconciliation(self, account_ref: str, period: str) -> Optional[ReconciliationDocument]:
        document_id = self._by_identity.get((ReconciliationDocument.__name__, account_ref, period))
        return self._documents.get(document_id) if document_id else None

    def find_filing(
        self,
        company_ref: str,
        period: str,
        filing_type: FilingType = FilingType.WHT_STATEMENT,
    ) -> Optional[FilingDocument]:
        document_id = self._by_identity.get((FilingDocument.__name__, company_ref, filing_type.value, period))
        return self._documents.get(document_id) if document_id else None

    def filings(
        self,
        company_ref: Optional[str] = None,
        fiscal_year: Optional[str] = None,
        filing_type: Optional[FilingType] = None,
    ) -> list[FilingDocument]:
        """Filings matching the given filters, ordered by period."""
        found = [
            doc for doc in self._documents.values()
            if isinstance(doc, FilingDocument)
            and (company_ref is None or doc.company_ref == company_ref)
            and (fiscal_year is None or doc.fiscal_year == fiscal_year)
            and (filing_type is None or doc.filing_type == filing_type)
        ]
        return sorted(found, key=lambda d: d.period)

    def reconciliations(self, account_ref: Optional[str] = None) -> list[ReconciliationDocument]:
        found = [
            doc for doc in self._documents.values()
            if isinstance(doc, ReconciliationDocument)
            and (account_ref is None or doc.account_ref == account_ref)
        ]
        return sorted(found, key=lambda d: (d.account_ref, d.period))

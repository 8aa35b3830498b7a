from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, Optional, Union

from orderdesk import strapi_client
from orderdesk.calc_utils import to_number
from orderdesk.models import BulkResult, Document
from orderdesk.quantities import COMPLETED, DRAFT, can_delete, can_transition

logger = logging.getLogger(__name__)

BULK_ACTIONS = ("complete", "invoice", "delete")

SelectedKeys = Union[str, Iterable[Any]]
DocumentAction = Callable[[Document], Dict[str, Any]]
DocumentGuard = Callable[[Document], Optional[str]]


def selected_documents(documents: Iterable[Document], selected_keys: Optional[SelectedKeys]) -> list[Document]:
    documents = list(documents)
    if selected_keys == "all":
        return documents
    if not selected_keys:
        return []
    keys = {str(key) for key in selected_keys}
    return [doc for doc in documents if str(doc.id) in keys]


def validate_for_invoice(document: Document) -> bool:
    """Every line needs a price and confirmed items with a positive quantity."""
    if not document.order_products:
        return False
    for op in document.order_products:
        if to_number(op.price) <= 0 or not op.items:
            return False
        if not all(to_number(item.quantity) > 0 for item in op.items):
            return False
    return True


def run_bulk_action(
    documents: Iterable[Document],
    action: DocumentAction,
    guard: Optional[DocumentGuard] = None,
) -> BulkResult:
    """Run `action` on every document at once; one failure never stops the rest.

    `guard` returns an error message for documents the action must not touch;
    those are reported as failed without reaching the backend.
    """
    documents = list(documents)
    result = BulkResult()
    if not documents:
        return result

    def run(document: Document) -> Optional[str]:
        if guard is not None:
            refused = guard(document)
            if refused:
                return refused
        try:
            outcome = action(document) or {}
        except Exception as exc:
            logger.exception("Bulk action failed for document %s", document.id)
            return str(exc) or exc.__class__.__name__
        if outcome.get("success") is False:
            return str(outcome.get("error") or "Unknown error")
        return None

    with ThreadPoolExecutor(max_workers=len(documents)) as pool:
        outcomes = list(pool.map(run, documents))

    for document, error in zip(documents, outcomes):
        if error is None:
            result.succeeded += 1
        else:
            result.failed += 1
            result.errors[str(document.id)] = error

    logger.info("Bulk action finished: %s", result.message)
    return result


def transition_guard(state: str) -> DocumentGuard:
    def guard(document: Document) -> Optional[str]:
        if can_transition(document.state, state):
            return None
        return f"Cannot move document from {document.state or DRAFT} to {state}"

    return guard


def delete_guard(document: Document) -> Optional[str]:
    if can_delete(document):
        return None
    return "Only draft or confirmed documents can be deleted"


def bulk_update_state(
    documents: Iterable[Document],
    state: str = COMPLETED,
    extra: Optional[Dict[str, Any]] = None,
    token: Optional[str] = None,
) -> BulkResult:
    data = {"state": state, **(extra or {})}
    return run_bulk_action(
        documents,
        lambda doc: strapi_client.update_order(doc.id, data, token=token),
        guard=transition_guard(state),
    )


def bulk_delete(documents: Iterable[Document], token: Optional[str] = None) -> BulkResult:
    return run_bulk_action(
        documents,
        lambda doc: strapi_client.delete_order(doc.id, token=token),
        guard=delete_guard,
    )


def bulk_invoice(documents: Iterable[Document], token: Optional[str] = None) -> BulkResult:
    """Complete and invoice the documents, refusing the batch if any line is not billable."""
    documents = list(documents)
    invalid = [doc for doc in documents if not validate_for_invoice(doc)]
    if invalid:
        return BulkResult(
            failed=len(invalid),
            errors={str(doc.id): "Products without price or confirmed items" for doc in invalid},
        )
    return bulk_update_state(documents, COMPLETED, extra={"emitInvoice": True}, token=token)


def perform(action: str, documents: Iterable[Document], token: Optional[str] = None) -> BulkResult:
    if action == "complete":
        return bulk_update_state(documents, COMPLETED, token=token)
    if action == "invoice":
        return bulk_invoice(documents, token=token)
    if action == "delete":
        return bulk_delete(documents, token=token)
    raise ValueError(f"Unknown bulk action: {action}")

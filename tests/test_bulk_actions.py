"""Tests for selecting documents and running bulk actions."""

import threading

import pytest

from orderdesk import bulk_actions, strapi_client
from orderdesk.models import Document


def _doc(doc_id, price=1000, quantities=(5,)):
    return Document.model_validate(
        {
            "id": doc_id,
            "state": "confirmed",
            "orderProducts": [
                {
                    "id": doc_id * 10,
                    "product": 5,
                    "price": price,
                    "items": [{"id": i, "quantity": q} for i, q in enumerate(quantities)],
                }
            ],
        }
    )


# ---------------------------------------------------------------------------
# selected_documents
# ---------------------------------------------------------------------------

def test_select_all():
    docs = [_doc(1), _doc(2)]
    assert bulk_actions.selected_documents(docs, "all") == docs


def test_select_by_string_or_int_keys():
    docs = [_doc(1), _doc(2), _doc(3)]
    selected = bulk_actions.selected_documents(docs, {"1", 3})
    assert [doc.id for doc in selected] == [1, 3]


def test_select_nothing():
    assert bulk_actions.selected_documents([_doc(1)], set()) == []
    assert bulk_actions.selected_documents([_doc(1)], None) == []


# ---------------------------------------------------------------------------
# validate_for_invoice
# ---------------------------------------------------------------------------

def test_valid_for_invoice():
    assert bulk_actions.validate_for_invoice(_doc(1))


def test_line_without_price_is_not_invoiceable():
    assert not bulk_actions.validate_for_invoice(_doc(1, price=0))


def test_item_without_quantity_is_not_invoiceable():
    assert not bulk_actions.validate_for_invoice(_doc(1, quantities=(5, 0)))


def test_line_without_items_is_not_invoiceable():
    assert not bulk_actions.validate_for_invoice(_doc(1, quantities=()))


def test_document_without_lines_is_not_invoiceable():
    assert not bulk_actions.validate_for_invoice(Document(id=1))


# ---------------------------------------------------------------------------
# run_bulk_action
# ---------------------------------------------------------------------------

class TestPartialFailure:
    @pytest.fixture(autouse=True)
    def run(self):
        self.seen = []
        lock = threading.Lock()

        def action(doc):
            with lock:
                self.seen.append(doc.id)
            if doc.id == 2:
                raise RuntimeError("connection reset")
            if doc.id == 3:
                return {"success": False, "error": "Not found"}
            return {"success": True, "data": {"id": doc.id}}

        self.result = bulk_actions.run_bulk_action([_doc(i) for i in range(1, 5)], action)

    def test_every_document_is_attempted(self):
        assert sorted(self.seen) == [1, 2, 3, 4]

    def test_counts(self):
        assert self.result.succeeded == 2
        assert self.result.failed == 2

    def test_errors_by_document(self):
        assert self.result.errors == {"2": "connection reset", "3": "Not found"}

    def test_message(self):
        assert self.result.message == "2 succeeded, 2 failed"


def test_run_bulk_action_with_no_documents():
    result = bulk_actions.run_bulk_action([], lambda doc: pytest.fail("should not run"))
    assert result.succeeded == 0
    assert result.failed == 0


def test_requests_run_concurrently():
    barrier = threading.Barrier(3, timeout=5)

    def action(doc):
        barrier.wait()
        return {"success": True}

    result = bulk_actions.run_bulk_action([_doc(1), _doc(2), _doc(3)], action)
    assert result.succeeded == 3


# ---------------------------------------------------------------------------
# Strapi-backed actions
# ---------------------------------------------------------------------------

def test_bulk_complete(monkeypatch):
    calls = []

    def fake_update(order_id, data, token=None):
        calls.append((order_id, data, token))
        return {"success": True, "data": {"id": order_id}}

    monkeypatch.setattr(strapi_client, "update_order", fake_update)
    result = bulk_actions.perform("complete", [_doc(1), _doc(2)], token="tok")

    assert result.succeeded == 2
    assert sorted(calls, key=lambda call: call[0]) == [
        (1, {"state": "completed"}, "tok"),
        (2, {"state": "completed"}, "tok"),
    ]


def test_bulk_invoice_sends_emit_flag(monkeypatch):
    calls = []
    monkeypatch.setattr(
        strapi_client,
        "update_order",
        lambda order_id, data, token=None: calls.append(data) or {"success": True},
    )
    result = bulk_actions.perform("invoice", [_doc(1)])
    assert result.succeeded == 1
    assert calls == [{"state": "completed", "emitInvoice": True}]


def test_bulk_invoice_refuses_batch_with_invalid_documents(monkeypatch):
    monkeypatch.setattr(
        strapi_client,
        "update_order",
        lambda *args, **kwargs: pytest.fail("should not update"),
    )
    result = bulk_actions.perform("invoice", [_doc(1), _doc(2, price=0)])
    assert result.succeeded == 0
    assert result.failed == 1
    assert "2" in result.errors


def test_bulk_delete(monkeypatch):
    monkeypatch.setattr(
        strapi_client,
        "delete_order",
        lambda order_id, token=None: {"success": order_id != 2, "error": "Forbidden"},
    )
    result = bulk_actions.perform("delete", [_doc(1), _doc(2)])
    assert result.succeeded == 1
    assert result.errors == {"2": "Forbidden"}


def test_unknown_action():
    with pytest.raises(ValueError):
        bulk_actions.perform("archive", [_doc(1)])


# ---------------------------------------------------------------------------
# Lifecycle rules
# ---------------------------------------------------------------------------

def _in_state(doc_id, state):
    return _doc(doc_id).model_copy(update={"state": state})


def test_bulk_delete_skips_closed_documents(monkeypatch):
    deleted = []
    monkeypatch.setattr(
        strapi_client,
        "delete_order",
        lambda order_id, token=None: deleted.append(order_id) or {"success": True},
    )
    docs = [_in_state(1, "completed"), _in_state(2, "canceled"), _in_state(3, "draft")]

    result = bulk_actions.perform("delete", docs)

    assert deleted == [3]
    assert result.message == "1 succeeded, 2 failed"
    assert result.errors == {
        "1": "Only draft or confirmed documents can be deleted",
        "2": "Only draft or confirmed documents can be deleted",
    }


def test_bulk_complete_follows_state_machine(monkeypatch):
    updated = []
    monkeypatch.setattr(
        strapi_client,
        "update_order",
        lambda order_id, data, token=None: updated.append(order_id) or {"success": True},
    )
    docs = [_in_state(1, "canceled"), _in_state(2, "draft"), _in_state(3, "completed"), _in_state(4, "confirmed")]

    result = bulk_actions.perform("complete", docs)

    assert updated == [4]
    assert result.succeeded == 1
    assert result.failed == 3
    assert result.errors["1"] == "Cannot move document from canceled to completed"
    assert result.errors["2"] == "Cannot move document from draft to completed"


def test_bulk_invoice_skips_canceled_documents(monkeypatch):
    monkeypatch.setattr(
        strapi_client,
        "update_order",
        lambda *args, **kwargs: pytest.fail("should not update"),
    )
    result = bulk_actions.perform("invoice", [_in_state(7, "cancelled")])
    assert result.failed == 1
    assert result.errors == {"7": "Cannot move document from cancelled to completed"}

"""Tests for state-dependent quantities and the document lifecycle."""

import pytest

from orderdesk.models import Document, OrderProduct
from orderdesk.quantities import (
    InvalidTransition,
    can_delete,
    can_transition,
    footer_totals,
    is_read_only,
    line_display,
    select_quantity,
    transition,
)


def _line(**overrides):
    data = {
        "id": 1,
        "product": {"id": 5, "name": "Tela azul"},
        "price": 1000,
        "requestedQuantity": 10,
        "requestedPackages": 1,
        "confirmedQuantity": 20,
        "confirmedPackages": 2,
        "deliveredQuantity": 30,
        "deliveredPackages": 3,
    }
    data.update(overrides)
    return OrderProduct.model_validate(data)


# ---------------------------------------------------------------------------
# select_quantity
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "state, expected",
    [
        ("draft", (10, 1)),
        ("confirmed", (20, 2)),
        ("completed", (30, 3)),
        ("canceled", (0, 0)),
        ("processing", (0, 0)),
        (None, (0, 0)),
    ],
)
def test_select_quantity_per_state(state, expected):
    assert select_quantity(_line(), state) == expected


def test_select_quantity_missing_fields_are_zero():
    line = OrderProduct.model_validate({"id": 1, "product": 5})
    assert select_quantity(line, "confirmed") == (0, 0)


# ---------------------------------------------------------------------------
# Confirmed document with an IVA-included price
# ---------------------------------------------------------------------------

class TestConfirmedIvaIncludedLine:
    @pytest.fixture(autouse=True)
    def build(self):
        self.line = _line(confirmedQuantity=50, confirmedPackages=5, price=1000, ivaIncluded=True)
        self.displayed = line_display(self.line, "confirmed")

    def test_price_is_net_of_iva(self):
        assert self.displayed.price == 840.34

    def test_quantity_is_confirmed_quantity(self):
        assert self.displayed.quantity == 50

    def test_packages_are_confirmed_packages(self):
        assert self.displayed.packages == 5

    def test_line_total(self):
        assert self.displayed.total == pytest.approx(42017.0)


def test_footer_totals_skip_empty_rows():
    lines = [
        _line(price=100),
        _line(id=2, price=50, requestedQuantity=4, requestedPackages=2),
        OrderProduct(id="new"),
    ]
    footer = footer_totals(lines, "draft")
    assert footer.quantity == 14
    assert footer.packages == 3
    assert footer.total == pytest.approx(1200.0)


# ---------------------------------------------------------------------------
# Read-only / delete guards
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("state", ["completed", "canceled", "cancelled"])
def test_terminal_states_are_read_only(state):
    assert is_read_only(Document(state=state))


def test_draft_is_editable():
    assert not is_read_only(Document(state="draft"))


def test_invoiced_document_is_read_only():
    assert is_read_only(Document.model_validate({"state": "confirmed", "siigoIdTypeA": "123"}))


def test_admin_can_edit_completed_document():
    assert not is_read_only(Document(state="completed"), is_admin=True)


@pytest.mark.parametrize("state, expected", [("draft", True), ("confirmed", True), ("completed", False), (None, False)])
def test_can_delete(state, expected):
    assert can_delete(Document(state=state)) is expected


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "current, target, expected",
    [
        ("draft", "confirmed", True),
        ("draft", "completed", False),
        ("confirmed", "completed", True),
        ("confirmed", "canceled", True),
        ("draft", "cancelled", True),
        ("completed", "canceled", False),
        ("canceled", "draft", False),
        (None, "confirmed", True),
    ],
)
def test_can_transition(current, target, expected):
    assert can_transition(current, target) is expected


def test_transition_returns_new_document():
    document = Document(id=1, state="draft")
    moved = transition(document, "confirmed")
    assert moved.state == "confirmed"
    assert document.state == "draft"


def test_transition_rejects_skipping_states():
    with pytest.raises(InvalidTransition):
        transition(Document(id=1, state="draft"), "completed")

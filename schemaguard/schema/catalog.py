"""Ready-made Schema Descriptors used by the CLI and as worked examples.

- ticket_schema(): tickets and their subtasks drawing ids from one shared
  "work-item" space, linked by depends_on references
- receipt_schema(): line items whose price x quantity must add up to the
  subtotal, and subtotal + tax to the total, exactly
- classification_schema(): single-label classification with a confidence
"""

from typing import Callable

from schemaguard.errors import SchemaDefinitionError
from schemaguard.schema.descriptor import (
    ScalarType,
    SchemaDescriptor,
    array,
    enum,
    id_field,
    reference,
    scalar,
)
from schemaguard.schema.rules import aggregate_rule, sum_of_fields_rule


WORK_ITEM_SPACE = "work-item"

PRIORITY_CHOICES = {
    "low": "Can wait; no user impact",
    "medium": "Should be handled this cycle",
    "high": "Blocks users or other work",
    "urgent": "Production incident, drop everything",
}

STATUS_CHOICES = {
    "open": "Not started",
    "in_progress": "Someone is working on it",
    "done": "Finished and verified",
}


def ticket_schema() -> SchemaDescriptor:
    """Tickets with nested subtasks sharing one id space."""
    subtask = SchemaDescriptor(
        name="Subtask",
        description="A concrete step needed to finish the parent ticket.",
        fields=[
            id_field("id", WORK_ITEM_SPACE),
            scalar("title", description="Short imperative summary"),
            enum("status", STATUS_CHOICES, required=False),
            array("depends_on", reference("item", WORK_ITEM_SPACE), required=False,
                  description="Ids of tickets or subtasks that must finish first"),
        ],
    )
    ticket = SchemaDescriptor(
        name="Ticket",
        description="A unit of work mentioned in the text.",
        fields=[
            id_field("id", WORK_ITEM_SPACE),
            scalar("title", description="Short summary of the ticket"),
            scalar("description", required=False),
            enum("priority", PRIORITY_CHOICES),
            enum("status", STATUS_CHOICES, required=False),
            scalar("estimate_hours", ScalarType.NUMBER, required=False, minimum=0),
            array("subtasks", subtask, required=False),
            array("depends_on", reference("item", WORK_ITEM_SPACE), required=False,
                  description="Ids of tickets or subtasks that must finish first"),
        ],
    )
    return SchemaDescriptor(
        name="TicketBatch",
        description="All tickets described in the input.",
        guidance=(
            "Give every ticket and subtask a distinct id. Ids are shared between "
            "tickets and subtasks, so never reuse a ticket id for a subtask. "
            "Only reference ids that appear in your output."
        ),
        guidance_version="1",
        fields=[array("tickets", ticket)],
    )


def receipt_schema() -> SchemaDescriptor:
    """Purchase receipt with exact line-item and total arithmetic."""
    item = SchemaDescriptor(
        name="LineItem",
        fields=[
            scalar("name"),
            scalar("price", ScalarType.DECIMAL, description="Unit price", minimum=0),
            scalar("quantity", ScalarType.INTEGER, required=False,
                   description="Defaults to 1 when not printed", minimum=1),
        ],
    )
    return SchemaDescriptor(
        name="Receipt",
        description="A purchase receipt or invoice.",
        guidance=(
            "Copy amounts exactly as printed. Do not round. "
            "The subtotal is the sum of unit price times quantity over all items."
        ),
        guidance_version="1",
        fields=[
            scalar("merchant"),
            scalar("date", required=False, description="ISO 8601 date (YYYY-MM-DD)"),
            enum("currency", ["USD", "EUR", "GBP", "JPY"], required=False),
            array("items", item),
            scalar("subtotal", ScalarType.DECIMAL, minimum=0),
            scalar("tax", ScalarType.DECIMAL, required=False, minimum=0),
            scalar("total", ScalarType.DECIMAL, minimum=0),
        ],
        rules=[
            aggregate_rule("items", "price", "quantity", "subtotal"),
            sum_of_fields_rule("total", ["subtotal", "tax"]),
        ],
    )


def classification_schema() -> SchemaDescriptor:
    """Single-label support request classification."""
    return SchemaDescriptor(
        name="Classification",
        description="Category of a customer support message.",
        fields=[
            enum("label", {
                "bug": "Something is broken or behaves incorrectly",
                "feature_request": "Asks for new behavior",
                "billing": "Payments, invoices, refunds",
                "question": "How-to or general question",
            }),
            scalar("confidence", ScalarType.NUMBER, minimum=0, maximum=1),
            scalar("rationale", required=False, description="One sentence"),
        ],
    )


CATALOG: dict[str, Callable[[], SchemaDescriptor]] = {
    "tickets": ticket_schema,
    "receipt": receipt_schema,
    "classification": classification_schema,
}


def get_schema(name: str) -> SchemaDescriptor:
    """Look up a catalog schema by name.

    Raises:
        SchemaDefinitionError: If the name is unknown.
    """
    try:
        return CATALOG[name]()
    except KeyError:
        raise SchemaDefinitionError(
            f"Unknown schema '{name}'. Available: {', '.join(sorted(CATALOG))}"
        ) from None

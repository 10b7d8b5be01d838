"""Tests for the Validator: structural and semantic checks.

Tests cover:
- Receipt aggregates compared with exact Decimal arithmetic
- Required presence, enum membership, types and numeric ranges
- Reference integrity and id collisions in shared spaces
- Custom rules on nested shapes (paths prefixed) and caller rules (run last)
- Determinism and side-effect freedom
"""

import copy
import json
from decimal import Decimal

from schemaguard.extraction import decode, validate
from schemaguard.records import Violation
from schemaguard.schema import (
    ScalarType,
    SchemaDescriptor,
    aggregate_rule,
    array,
    scalar,
    sum_of_fields_rule,
)


def _receipt(subtotal, total=None):
    return {
        "merchant": "Corner Cafe",
        "items": [
            {"name": "Latte", "price": 35.2, "quantity": 2},
            {"name": "Cake", "price": 37.2, "quantity": 1},
        ],
        "subtotal": subtotal,
        "total": subtotal if total is None else total,
    }


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class TestReceiptAggregates:
    def test_exact_sum_is_valid(self, receipt) -> None:
        decoded = decode(json.dumps(_receipt(107.6)), receipt)
        assert decoded.value["subtotal"] == Decimal("107.6")
        assert validate(decoded.value, receipt, index=decoded.index) == []

    def test_mismatched_subtotal(self, receipt) -> None:
        decoded = decode(json.dumps(_receipt(100.0)), receipt)
        violations = validate(decoded.value, receipt, index=decoded.index)
        assert len(violations) == 1
        assert violations[0].field_path == "subtotal"
        assert violations[0].rule == "aggregate_mismatch"
        assert "107.6" in violations[0].message

    def test_decimal_values_accepted(self, receipt) -> None:
        value = _receipt(Decimal("107.6"))
        value["tax"] = Decimal("0.00")
        assert validate(value, receipt) == []

    def test_total_must_include_tax(self, receipt) -> None:
        value = _receipt(107.6, total=107.6)
        value["tax"] = Decimal("5")
        violations = validate(value, receipt)
        assert [(v.field_path, v.rule) for v in violations] == [("total", "aggregate_mismatch")]

    def test_missing_quantity_counts_once(self) -> None:
        rule = aggregate_rule("items", "price", "quantity", "subtotal")
        assert rule({"items": [{"price": 2.5}, {"price": 1, "quantity": 2}], "subtotal": 4.5}) == []

    def test_rule_silent_on_non_numeric(self) -> None:
        rule = aggregate_rule("items", "price", "quantity", "subtotal")
        assert rule({"items": [{"price": "n/a"}], "subtotal": 1}) == []

    def test_sum_of_fields_missing_part_is_zero(self) -> None:
        rule = sum_of_fields_rule("total", ["subtotal", "tax"])
        assert rule({"subtotal": 10, "total": 10}) == []
        assert rule({"subtotal": 10, "tax": 1, "total": 10})[0].rule == "aggregate_mismatch"


class TestNonFiniteNumbers:
    def test_infinite_totals_reported(self, receipt) -> None:
        value = _receipt(Decimal("Infinity"))
        violations = validate(value, receipt)
        assert [(v.field_path, v.rule) for v in violations] == [
            ("subtotal", "type_mismatch"),
            ("total", "type_mismatch"),
        ]
        assert "finite" in violations[0].message

    def test_nan_price_reported(self, receipt) -> None:
        value = _receipt(107.6)
        value["items"][0]["price"] = Decimal("NaN")
        violations = validate(value, receipt)
        assert ("items[0].price", "type_mismatch") in [(v.field_path, v.rule) for v in violations]

    def test_float_infinity_reported(self, classification) -> None:
        violations = validate({"label": "bug", "confidence": float("inf")}, classification)
        assert [(v.field_path, v.rule) for v in violations] == [("confidence", "type_mismatch")]

    def test_huge_number_checked_against_range(self, classification) -> None:
        decoded = decode('{"label": "bug", "confidence": 1e400}', classification)
        assert decoded.value["confidence"] == Decimal("1e400")
        violations = validate(decoded.value, classification, index=decoded.index)
        assert [(v.field_path, v.rule) for v in violations] == [("confidence", "above_maximum")]


# ---------------------------------------------------------------------------
# Structural checks
# ---------------------------------------------------------------------------


class TestStructural:
    def test_missing_required(self, receipt) -> None:
        value = _receipt(107.6)
        del value["merchant"]
        violations = validate(value, receipt)
        assert [(v.field_path, v.rule) for v in violations] == [("merchant", "missing_required")]

    def test_blank_string_is_missing(self, classification) -> None:
        violations = validate({"label": "  ", "confidence": 0.5}, classification)
        assert [(v.field_path, v.rule) for v in violations] == [("label", "missing_required")]

    def test_enum_mismatch(self, classification) -> None:
        violations = validate({"label": "spam", "confidence": 0.5}, classification)
        assert len(violations) == 1
        assert violations[0].rule == "enum_mismatch"
        assert '"bug"' in violations[0].message

    def test_type_mismatch(self, classification) -> None:
        violations = validate({"label": "bug", "confidence": "high"}, classification)
        assert [(v.field_path, v.rule) for v in violations] == [("confidence", "type_mismatch")]

    def test_boolean_is_not_a_number(self, classification) -> None:
        violations = validate({"label": "bug", "confidence": True}, classification)
        assert violations[0].rule == "type_mismatch"

    def test_ranges(self, classification) -> None:
        high = validate({"label": "bug", "confidence": 1.5}, classification)
        low = validate({"label": "bug", "confidence": -0.1}, classification)
        assert [v.rule for v in high] == ["above_maximum"]
        assert [v.rule for v in low] == ["below_minimum"]

    def test_nested_paths(self, receipt) -> None:
        value = _receipt(107.6)
        value["items"][1]["price"] = -1
        value["items"][1]["quantity"] = 0
        paths = [(v.field_path, v.rule) for v in validate(value, receipt)]
        assert ("items[1].price", "below_minimum") in paths
        assert ("items[1].quantity", "below_minimum") in paths

    def test_array_container_mismatch(self, receipt) -> None:
        value = _receipt(107.6)
        value["items"] = "two lattes"
        violations = validate(value, receipt)
        assert ("items", "type_mismatch") in [(v.field_path, v.rule) for v in violations]

    def test_non_object_item(self, receipt) -> None:
        value = _receipt(107.6)
        value["items"].append(3)
        paths = [(v.field_path, v.rule) for v in validate(value, receipt)]
        assert ("items[2]", "type_mismatch") in paths

    def test_check_order_within_node(self, classification) -> None:
        violations = validate({"label": "spam", "confidence": 7}, classification)
        assert [v.rule for v in violations] == ["enum_mismatch", "above_maximum"]
        violations = validate({"confidence": "x"}, classification)
        assert [v.rule for v in violations] == ["missing_required", "type_mismatch"]


# ---------------------------------------------------------------------------
# References and ids
# ---------------------------------------------------------------------------


class TestReferences:
    def test_resolving_references(self, tickets) -> None:
        value = {
            "tickets": [
                {"id": "1", "title": "a", "priority": "low",
                 "subtasks": [{"id": "2", "title": "b", "depends_on": ["1"]}]},
                {"id": "3", "title": "c", "priority": "high", "depends_on": ["2"]},
            ]
        }
        assert validate(value, tickets) == []

    def test_dangling_reference(self, tickets) -> None:
        value = {"tickets": [{"id": "1", "title": "a", "priority": "low", "depends_on": ["99"]}]}
        violations = validate(value, tickets)
        assert len(violations) == 1
        assert violations[0].field_path == "tickets[0].depends_on[0]"
        assert violations[0].rule == "dangling_reference"

    def test_identity_collision(self, tickets) -> None:
        value = {
            "tickets": [
                {"id": "1", "title": "a", "priority": "low",
                 "subtasks": [{"id": "1", "title": "b"}]},
            ]
        }
        violations = validate(value, tickets)
        assert [(v.field_path, v.rule) for v in violations] == [
            ("tickets[0].subtasks[0].id", "identity_collision")
        ]

    def test_id_must_be_string(self, tickets) -> None:
        value = {"tickets": [{"id": 5, "title": "a", "priority": "low"}]}
        violations = validate(value, tickets)
        assert [(v.field_path, v.rule) for v in violations] == [("tickets[0].id", "type_mismatch")]


# ---------------------------------------------------------------------------
# Custom rules
# ---------------------------------------------------------------------------


def _positive_weight(node):
    if node.get("weight", 0) <= 0:
        return [Violation("weight", "weight_positive", "weight must be positive")]
    return []


class TestCustomRules:
    def test_nested_rule_paths_prefixed(self) -> None:
        parcel = SchemaDescriptor(
            "Parcel", [scalar("weight", ScalarType.NUMBER)], rules=[_positive_weight]
        )
        shipment = SchemaDescriptor("Shipment", [array("parcels", parcel)])
        violations = validate({"parcels": [{"weight": 1}, {"weight": 0}]}, shipment)
        assert [(v.field_path, v.rule) for v in violations] == [
            ("parcels[1].weight", "weight_positive")
        ]

    def test_caller_rules_run_last(self, classification) -> None:
        def _always(node):
            return [Violation("$", "caller_rule", "checked")]

        violations = validate({"label": "spam", "confidence": 0.5}, classification, [_always])
        assert [v.rule for v in violations] == ["enum_mismatch", "caller_rule"]

    def test_rules_in_registration_order(self) -> None:
        def _first(node):
            return [Violation("$", "first", "1")]

        def _second(node):
            return [Violation("$", "second", "2")]

        shape = SchemaDescriptor("X", [scalar("a")], rules=[_first, _second])
        assert [v.rule for v in validate({"a": "x"}, shape)] == ["first", "second"]


# ---------------------------------------------------------------------------
# Determinism
# ---------------------------------------------------------------------------


class TestDeterminism:
    def test_same_input_same_output(self, tickets) -> None:
        value = {
            "tickets": [
                {"id": "1", "title": "", "priority": "meh", "depends_on": ["7", "8"],
                 "subtasks": [{"id": "1"}]},
            ]
        }
        assert validate(value, tickets) == validate(value, tickets)

    def test_does_not_mutate(self, tickets) -> None:
        value = {"tickets": [{"title": "a", "priority": "low", "subtasks": [{"title": "b"}]}]}
        before = copy.deepcopy(value)
        validate(value, tickets)
        assert value == before

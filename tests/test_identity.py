"""Tests for the Identity Allocator and NodeIndex.

Tests cover:
- Opaque per-space id generation that skips bound ids
- assign(): model ids kept, missing or blank ids filled, collisions recorded
- Generated ids never shadow model ids appearing later in the tree
- index_nodes() is read-only
- Reference resolution by (space, id)
"""

from schemaguard.extraction import IdentityAllocator, index_nodes


class TestAllocator:
    def test_sequential_ids_per_space(self) -> None:
        allocator = IdentityAllocator()
        assert allocator.next_id("work-item") == "work-item-1"
        assert allocator.next_id("work-item") == "work-item-2"
        assert allocator.next_id("person") == "person-1"

    def test_skips_reserved_ids(self) -> None:
        allocator = IdentityAllocator()
        assert allocator.reserve("work-item", "work-item-1")
        assert allocator.next_id("work-item") == "work-item-2"

    def test_reserve_reports_already_bound(self) -> None:
        allocator = IdentityAllocator()
        assert allocator.reserve("s", "a")
        assert not allocator.reserve("s", "a")
        assert allocator.is_bound("s", "a")
        assert not allocator.is_bound("other", "a")


class TestAssign:
    def test_fills_missing_ids(self, tickets) -> None:
        value = {"tickets": [{"title": "a", "subtasks": [{"title": "b"}]}]}
        index = IdentityAllocator().assign(value, tickets)

        ticket = value["tickets"][0]
        assert ticket["id"] == "work-item-1"
        assert ticket["subtasks"][0]["id"] == "work-item-2"
        assert len(index) == 2
        assert index.resolve("work-item", "work-item-2").shape == "Subtask"

    def test_keeps_model_ids(self, tickets) -> None:
        value = {"tickets": [{"id": "T-7", "title": "a"}]}
        index = IdentityAllocator().assign(value, tickets)
        assert value["tickets"][0]["id"] == "T-7"
        assert index.resolve("work-item", "T-7").path == "tickets[0]"

    def test_generated_ids_avoid_later_model_ids(self, tickets) -> None:
        value = {"tickets": [{"title": "first"}, {"id": "work-item-1", "title": "second"}]}
        index = IdentityAllocator().assign(value, tickets)
        assert value["tickets"][0]["id"] == "work-item-2"
        assert not index.collisions

    def test_collision_recorded_not_renumbered(self, tickets) -> None:
        value = {
            "tickets": [
                {"id": "1", "title": "ticket", "subtasks": [{"id": "1", "title": "subtask"}]}
            ]
        }
        index = IdentityAllocator().assign(value, tickets)

        assert value["tickets"][0]["subtasks"][0]["id"] == "1"
        assert len(index.collisions) == 1
        collision = index.collisions[0]
        assert collision.first_path == "tickets[0]"
        assert collision.second_path == "tickets[0].subtasks[0]"
        violation = collision.to_violation("id")
        assert violation.field_path == "tickets[0].subtasks[0].id"
        assert violation.rule == "identity_collision"
        # first owner wins
        assert index.resolve("work-item", "1").shape == "Ticket"

    def test_allocator_persists_across_passes(self, tickets) -> None:
        allocator = IdentityAllocator()
        allocator.assign({"tickets": [{"title": "a"}]}, tickets)
        value = {"tickets": [{"title": "a"}]}
        allocator.assign(value, tickets)
        assert value["tickets"][0]["id"] == "work-item-2"

    def test_wrongly_typed_id_left_alone(self, tickets) -> None:
        value = {"tickets": [{"id": ["x"], "title": "a"}]}
        index = IdentityAllocator().assign(value, tickets)
        assert value["tickets"][0]["id"] == ["x"]
        assert len(index) == 0

    def test_blank_ids_replaced(self, tickets) -> None:
        value = {"tickets": [{"id": " ", "title": "a"}, {"id": "", "title": "b"}]}
        index = IdentityAllocator().assign(value, tickets)
        assert [t["id"] for t in value["tickets"]] == ["work-item-1", "work-item-2"]
        assert len(index) == 2
        assert not index.collisions


class TestIndex:
    def test_index_nodes_is_read_only(self, tickets) -> None:
        value = {"tickets": [{"title": "a"}, {"id": "x", "title": "b"}]}
        index = index_nodes(value, tickets)
        assert "id" not in value["tickets"][0]
        assert ("work-item", "x") in index
        assert index.ids("work-item") == ["x"]

    def test_resolve_requires_string(self, tickets) -> None:
        index = index_nodes({"tickets": [{"id": "1", "title": "a"}]}, tickets)
        assert index.resolve("work-item", 1) is None
        assert index.resolve("work-item", "1") is not None
        assert index.resolve("other-space", "1") is None

    def test_owns_uses_node_identity(self, tickets) -> None:
        value = {"tickets": [{"id": "1", "title": "a"}, {"id": "1", "title": "b"}]}
        index = index_nodes(value, tickets)
        assert index.owns("work-item", "1", value["tickets"][0])
        assert not index.owns("work-item", "1", value["tickets"][1])
        assert [c.second_path for c in index.collisions] == ["tickets[1]"]

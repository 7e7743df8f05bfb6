import pytest

from utils.dedupe import DedupeWindow
from utils.ring_buffer import RingBuffer


class TestRingBuffer:
    @pytest.mark.parametrize("capacity", [0, -1])
    def test_non_positive_capacity_rejected(self, capacity):
        with pytest.raises(ValueError):
            RingBuffer(capacity)

    def test_push_returns_none_until_full(self):
        ring = RingBuffer(3)
        assert [ring.push(i) for i in range(3)] == [None, None, None]
        assert len(ring) == 3
        assert ring.to_list() == [0, 1, 2]

    def test_nth_push_past_capacity_evicts_oldest(self):
        ring = RingBuffer(3)
        evicted = [ring.push(i) for i in range(1, 8)]
        # push #4 evicts item #1, push #5 evicts #2, ...
        assert evicted == [None, None, None, 1, 2, 3, 4]
        assert len(ring) == 3
        assert ring.to_list() == [5, 6, 7]

    def test_drain_leaves_complement_in_order(self):
        ring = RingBuffer(5)
        for i in range(1, 8):
            ring.push(i)
        assert ring.drain(2) == [3, 4]
        assert ring.to_list() == [5, 6, 7]
        ring.push(8)
        ring.push(9)
        assert ring.to_list() == [5, 6, 7, 8, 9]

    def test_drain_edge_cases(self):
        ring = RingBuffer(3)
        ring.push("a")
        assert ring.drain(0) == []
        assert ring.drain(-2) == []
        assert ring.drain(10) == ["a"]
        assert len(ring) == 0
        assert ring.drain(1) == []


class TestDedupeWindow:
    def test_non_positive_capacity_rejected(self):
        with pytest.raises(ValueError):
            DedupeWindow(0)

    def test_repeat_is_false_inside_window(self):
        window = DedupeWindow(3)
        assert window.mark_once("round:1") is True
        assert window.mark_once("round:1") is False
        assert "round:1" in window

    def test_key_is_new_again_after_eviction(self):
        k = 4
        window = DedupeWindow(k)
        assert window.mark_once("a") is True
        for i in range(k - 1):
            assert window.mark_once(f"other-{i}") is True
        assert window.mark_once("a") is False

        assert window.mark_once("one-more") is True
        assert "a" not in window
        assert window.mark_once("a") is True
        assert len(window) == k

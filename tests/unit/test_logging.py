"""Unit tests for batch log correlation."""

import pytest

from utils.logging import (
    add_batch_context,
    clear_job_context,
    reset_item_context,
    set_item_context,
    set_job_context,
)


@pytest.mark.unit
class TestBatchContext:
    def test_no_batch_leaves_event_alone(self):
        assert add_batch_context(None, "info", {"event": "x"}) == {"event": "x"}

    def test_job_and_item_attached(self):
        job_token = set_job_context("batch-1")
        item_token = set_item_context(3)
        try:
            event = add_batch_context(None, "info", {"event": "item_finished"})
        finally:
            reset_item_context(item_token)
            clear_job_context(job_token)

        assert event == {"event": "item_finished", "job_id": "batch-1", "item_index": 3}

    def test_explicit_job_id_wins(self):
        token = set_job_context("batch-1")
        try:
            event = add_batch_context(None, "info", {"event": "x", "job_id": "other"})
        finally:
            clear_job_context(token)
        assert event["job_id"] == "other"

    def test_clear_restores_previous(self):
        outer = set_job_context("outer")
        inner = set_job_context("inner")
        clear_job_context(inner)
        try:
            assert add_batch_context(None, "info", {})["job_id"] == "outer"
        finally:
            clear_job_context(outer)
        assert add_batch_context(None, "info", {}) == {}

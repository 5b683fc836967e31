"""
Tests for the sent-template blocklist.
"""
import json

import pytest

from instay.services.template_blocklist import TemplateBlocklist

pytestmark = pytest.mark.unit


class TestTemplateBlocklist:
    """Tests for the monotonic phone set."""

    @pytest.fixture
    def blocklist(self, tmp_path):
        return TemplateBlocklist(file_path=str(tmp_path / "blocklist.json"))

    def test_add_and_contains(self, blocklist):
        assert blocklist.can_send("+34 600 111 222") is True
        assert blocklist.add("+34 600 111 222") is True
        assert blocklist.contains("34600111222") is True
        assert blocklist.can_send("+34600111222") is False

    def test_add_is_idempotent(self, blocklist):
        blocklist.add("123")
        assert blocklist.add("+123") is False
        assert len(blocklist) == 1

    def test_invalid_phone(self, blocklist):
        assert blocklist.add("") is False
        assert blocklist.contains("") is False
        assert blocklist.can_send("") is False

    def test_persists(self, tmp_path):
        path = tmp_path / "blocklist.json"
        TemplateBlocklist(file_path=str(path)).add("456")
        TemplateBlocklist(file_path=str(path)).add("123")
        assert json.loads(path.read_text()) == ["123", "456"]
        assert TemplateBlocklist(file_path=str(path)).all() == ["123", "456"]

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "blocklist.json"
        path.write_text('{"not": "a list"}')
        assert len(TemplateBlocklist(file_path=str(path))) == 0

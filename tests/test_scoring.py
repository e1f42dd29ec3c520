"""
Unit tests for autoscoring.
"""

import pytest

from conftest import FakeModelPort
from models import Record
from services.errors import TransportError
from services.prompt_resolver import CATEGORY_SCORING, PromptResolver
from services.scoring import Scorer, build_scoring_prompt, parse_score


class TestParseScore:

    def test_single_digit(self):
        """Test parsing a single digit."""
        assert parse_score("4") == 4

    def test_digit_inside_text(self):
        """Test parsing a digit inside text."""
        assert parse_score("Score: 3/5") == 3

    def test_think_block_is_ignored(self):
        """Test that digits in a think block are ignored."""
        assert parse_score("<think>maybe a 5? no</think>2") == 2

    def test_out_of_range_digits_are_skipped(self):
        """Test that out-of-range digits are skipped."""
        assert parse_score("0, 9 then 5") == 5

    def test_nothing_usable(self):
        """Test text with no score."""
        assert parse_score("excellent") == 0
        assert parse_score("") == 0
        assert parse_score(None) == 0


class TestScorer:

    def test_scores_record(self):
        """Test scoring a record."""
        port = FakeModelPort("5")
        record = Record(id="a", query="What is 2+2?", reasoning="2+2", answer="4")

        assert Scorer(port).score(record) == 5
        system_prompt, user_prompt = port.calls[0]
        assert "1-5" in system_prompt
        assert user_prompt == build_scoring_prompt(record)

    def test_prompt_override(self):
        """Test scoring with an overridden prompt."""
        port = FakeModelPort("3")
        prompts = PromptResolver({(CATEGORY_SCORING, "scorer"): "Be harsh."})

        Scorer(port, prompts=prompts).score(Record(id="a", query="q"))

        assert port.calls[0][0] == "Be harsh."

    def test_unparseable_response_scores_zero(self):
        """Test that an unparseable response scores zero."""
        assert Scorer(FakeModelPort("great work")).score(Record(id="a")) == 0

    def test_transport_error_propagates(self):
        """Test that transport errors propagate."""
        with pytest.raises(TransportError):
            Scorer(FakeModelPort(TransportError("down"))).score(Record(id="a"))

    def test_prompt_uses_query_fallback(self):
        """Test that the prompt falls back to the seed query."""
        record = Record(id="a", full_seed="seed question")
        assert "Query: seed question" in build_scoring_prompt(record)

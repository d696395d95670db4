"""Tests for RobustJSONParser."""

import pytest
from pydantic import ValidationError

from review_orchestrator.core.models import Category
from review_orchestrator.utils.json_parser import JSONParseError, RobustJSONParser
from review_orchestrator.workers.base import AnalysisResponse, ScoreResponse


class TestRobustJSONParser:
    """Tests for the fallback strategies."""

    def test_direct_parse(self):
        assert RobustJSONParser().parse('{"score": 9}') == {"score": 9}

    def test_markdown_fence(self):
        text = 'Here you go:\n```json\n{"score": 8.5}\n```\nThanks'
        assert RobustJSONParser().parse(text) == {"score": 8.5}

    def test_bracket_extraction_with_prose(self):
        text = 'The result is {"findings": [{"note": "brace } in string"}]} as requested.'
        assert RobustJSONParser().parse(text) == {"findings": [{"note": "brace } in string"}]}

    def test_list_extraction(self):
        assert RobustJSONParser().parse("values: [1, 2, 3] done", expected_type=list) == [1, 2, 3]

    def test_repair_trailing_comma(self):
        assert RobustJSONParser().parse('{"score": 7, }') == {"score": 7}

    def test_unparseable_raises_with_preview(self):
        with pytest.raises(JSONParseError) as exc_info:
            RobustJSONParser().parse("no json here at all")
        assert exc_info.value.response_preview.startswith("no json")
        assert exc_info.value.strategies_tried


class TestParseWithSchema:
    """Tests for schema validation of worker replies."""

    def test_analysis_response(self):
        text = """```json
        {"findings": [{"file": "src/app.py", "start_line": 4, "end_line": 2,
                       "issue_summary": "Flatten", "confidence": 14}]}
        ```"""
        response = RobustJSONParser().parse_with_schema(text, AnalysisResponse)

        (item,) = response.findings
        assert item.confidence == 10.0
        finding = item.to_finding(Category.SIMPLIFY)
        assert finding.line_range.start == 4
        assert finding.line_range.end == 4

    def test_out_of_range_score_fails_validation(self):
        with pytest.raises(ValidationError):
            RobustJSONParser().parse_with_schema('{"score": 11}', ScoreResponse)

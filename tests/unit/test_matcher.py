"""Unit tests for cue matching and assertion evaluation."""

import pytest

from virtuoso.composition.matcher import evaluate_assertion, matches, parse_document, validate_rule
from virtuoso.composition.models import AssertionType, MatchType
from virtuoso.interfaces import MatchEvaluationError

PONG = '<iq xmlns="jabber:client" type="result" id="ping-1" from="bob@localhost"/>'
CHAT = ('<message type="chat" id="m7" from="bob@localhost/phone" to="alice@localhost">'
        '<body>Hello there</body><thread>t-42</thread></message>')


class TestMatches:
    """Test cue matching rules."""

    @pytest.mark.unit
    @pytest.mark.parametrize("match_type,expression,expected", [
        (MatchType.CONTAINS, "ping-1", True),
        (MatchType.CONTAINS, "ping-2", False),
        (MatchType.REGEX, r'id="ping-\d+"', True),
        (MatchType.REGEX, r"^<message", False),
        (MatchType.XPATH, "//iq[@type='result']", True),
        (MatchType.XPATH, "//iq[@type='error']", False),
        (MatchType.XPATH, "count(//iq) = 1", True),
        (MatchType.XPATH, "string(/iq/@id)", True),
        (MatchType.XPATH, "string(/iq/@missing)", False),
    ])
    def test_match_rules(self, match_type, expression, expected):
        assert matches(match_type, expression, PONG, {}) is expected

    @pytest.mark.unit
    def test_xpath_ignores_namespaces(self):
        stanza = '<iq xmlns="jabber:client" type="get"><ping xmlns="urn:xmpp:ping"/></iq>'
        assert matches(MatchType.XPATH, "/iq/ping", stanza, {})

    @pytest.mark.unit
    def test_id_match_uses_captured_value(self):
        assert matches(MatchType.ID, "pingId", PONG, {"pingId": "ping-1"})
        assert not matches(MatchType.ID, "pingId", PONG, {"pingId": "ping-9"})

    @pytest.mark.unit
    def test_id_match_unknown_variable(self):
        with pytest.raises(MatchEvaluationError, match="has not been captured"):
            matches(MatchType.ID, "pingId", PONG, {})

    @pytest.mark.unit
    def test_placeholders_resolved_in_expression(self):
        assert matches(MatchType.CONTAINS, 'id="{{pingId}}"', PONG, {"pingId": "ping-1"})
        assert matches(MatchType.XPATH, "/iq[@id='{{pingId}}']", PONG, {"pingId": "ping-1"})

    @pytest.mark.unit
    def test_invalid_regex(self):
        with pytest.raises(MatchEvaluationError, match="Invalid regular expression"):
            matches(MatchType.REGEX, "([", PONG, {})

    @pytest.mark.unit
    def test_invalid_xpath(self):
        with pytest.raises(MatchEvaluationError, match="Invalid XPath"):
            matches(MatchType.XPATH, "//iq[", PONG, {})

    @pytest.mark.unit
    def test_xpath_on_malformed_candidate(self):
        with pytest.raises(MatchEvaluationError, match="not well-formed"):
            matches(MatchType.XPATH, "//iq", "<iq type='result'>", {})

    @pytest.mark.unit
    def test_text_rules_accept_malformed_candidate(self):
        assert matches(MatchType.CONTAINS, "result", "<iq type='result'>", {})
        assert matches(MatchType.REGEX, "res.lt", "<iq type='result'>", {})

    @pytest.mark.unit
    def test_entities_not_expanded(self):
        stanza = ('<!DOCTYPE iq [<!ENTITY boom "exploded">]>'
                  '<iq type="result"><query>&boom;</query></iq>')
        assert not matches(MatchType.XPATH, "//query[text()='exploded']", stanza, {})

    @pytest.mark.unit
    @pytest.mark.parametrize("match_type,expression,error", [
        (MatchType.REGEX, "([unclosed", "Invalid regular expression"),
        (MatchType.XPATH, "//iq[", "Invalid XPath"),
        (MatchType.XPATH, "//iq[@id='{{pingId}}'", "Invalid XPath"),
        (MatchType.ID, "corrId", "has not been captured"),
    ])
    def test_validate_rule_rejects_without_candidate(self, match_type, expression, error):
        with pytest.raises(MatchEvaluationError, match=error):
            validate_rule(match_type, expression, {"pingId": "ping-1"})

    @pytest.mark.unit
    def test_validate_rule_accepts_good_rules(self):
        validate_rule(MatchType.CONTAINS, "([", {})
        validate_rule(MatchType.REGEX, r"id='ping-\d+'", {})
        validate_rule(MatchType.XPATH, "/iq[@id='{{pingId}}']", {"pingId": "ping-1"})
        validate_rule(MatchType.ID, "pingId", {"pingId": "ping-1"})


class TestEvaluateAssertion:
    """Test assertion evaluation."""

    @pytest.mark.unit
    def test_contains(self):
        hit = evaluate_assertion(AssertionType.CONTAINS, "Hello", None, CHAT, {})
        miss = evaluate_assertion(AssertionType.CONTAINS, "Goodbye", None, CHAT, {})

        assert hit.passed and hit.actual == "Hello"
        assert not miss.passed and miss.actual is None
        assert miss.expected == "Goodbye"

    @pytest.mark.unit
    def test_contains_ignores_expected(self):
        result = evaluate_assertion(AssertionType.CONTAINS, "Hello", "Goodbye", CHAT, {})

        assert result.passed
        assert result.expected == "Hello"

    @pytest.mark.unit
    def test_regex_reports_matched_text(self):
        result = evaluate_assertion(AssertionType.REGEX, r"t-\d+", None, CHAT, {})

        assert result.passed
        assert result.actual == "t-42"

    @pytest.mark.unit
    def test_regex_with_expected(self):
        assert evaluate_assertion(AssertionType.REGEX, r"t-\d+", "t-42", CHAT, {}).passed
        assert not evaluate_assertion(AssertionType.REGEX, r"t-\d+", "t-43", CHAT, {}).passed

    @pytest.mark.unit
    def test_xpath(self):
        result = evaluate_assertion(AssertionType.XPATH, "/message/body", None, CHAT, {})
        empty = evaluate_assertion(AssertionType.XPATH, "/message/subject", None, CHAT, {})

        assert result.passed and result.actual == "Hello there"
        assert not empty.passed and empty.actual is None

    @pytest.mark.unit
    def test_xpath_with_expected(self):
        assert evaluate_assertion(AssertionType.XPATH, "/message/@type", "chat", CHAT, {}).passed
        mismatch = evaluate_assertion(AssertionType.XPATH, "/message/@type", "groupchat", CHAT, {})

        assert not mismatch.passed
        assert mismatch.actual == "chat"

    @pytest.mark.unit
    def test_xpath_numeric_result(self):
        result = evaluate_assertion(AssertionType.XPATH, "count(/message/*)", "2", CHAT, {})

        assert result.passed
        assert result.actual == "2"

    @pytest.mark.unit
    def test_equals(self):
        result = evaluate_assertion(AssertionType.EQUALS, "/message/thread", "t-42", CHAT, {})

        assert result.passed
        assert result.expected == "t-42"
        assert result.actual == "t-42"

    @pytest.mark.unit
    def test_equals_missing_attribute(self):
        result = evaluate_assertion(AssertionType.EQUALS, "/iq/@to", "alice@localhost", PONG, {})

        assert not result.passed
        assert result.actual is None

    @pytest.mark.unit
    def test_equals_unparseable_candidate(self):
        result = evaluate_assertion(AssertionType.EQUALS, "/iq/@id", "x", "not xml at all", {})

        assert not result.passed
        assert result.actual is None

    @pytest.mark.unit
    def test_equals_requires_expected(self):
        with pytest.raises(MatchEvaluationError, match="requires an expected value"):
            evaluate_assertion(AssertionType.EQUALS, "/iq/@id", None, PONG, {})

    @pytest.mark.unit
    def test_equals_invalid_pointer(self):
        with pytest.raises(MatchEvaluationError):
            evaluate_assertion(AssertionType.EQUALS, "/iq/@", "x", PONG, {})

    @pytest.mark.unit
    def test_expected_placeholders_resolved(self):
        result = evaluate_assertion(AssertionType.EQUALS, "/iq/@id", "{{pingId}}", PONG, {"pingId": "ping-1"})

        assert result.passed
        assert result.expected == "ping-1"


class TestParseDocument:
    """Test stanza parsing."""

    @pytest.mark.unit
    def test_namespaces_stripped(self):
        root = parse_document(PONG)

        assert root.tag == "iq"
        assert root.get("id") == "ping-1"

    @pytest.mark.unit
    def test_surrounding_whitespace_tolerated(self):
        assert parse_document("\n  <presence/>  \n").tag == "presence"

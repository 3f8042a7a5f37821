"""
Match and assertion evaluation against raw stanza text.

Cues use `matches` to recognise an inbound message; assertions use
`evaluate_assertion` to check a condition on the last observed message.
Both are pure functions of their inputs. Structural queries are XPath 1.0
evaluated with lxml against a namespace-stripped copy of the stanza, so
`//iq[@type='result']` works whether or not the peer sent `xmlns="jabber:client"`.
"""

import math
import re
from functools import lru_cache
from typing import Any, Mapping, Optional

from lxml import etree

from virtuoso.interfaces import MatchEvaluationError
from .models import AssertionResult, AssertionType, MatchType
from .variables import substitute

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)


@lru_cache(maxsize=256)
def _compile_regex(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise MatchEvaluationError(f"Invalid regular expression '{pattern}': {e}") from e


@lru_cache(maxsize=256)
def _compile_xpath(expression: str) -> etree.XPath:
    try:
        return etree.XPath(expression)
    except etree.XPathSyntaxError as e:
        raise MatchEvaluationError(f"Invalid XPath expression '{expression}': {e}") from e


def parse_document(candidate: str) -> etree._Element:
    """
    Parse stanza text into a namespace-free element tree.

    Raises:
        MatchEvaluationError: If the text is not well-formed XML
    """
    try:
        root = etree.fromstring(candidate.strip().encode("utf-8"), _PARSER)
    except etree.XMLSyntaxError as e:
        raise MatchEvaluationError(f"Candidate is not well-formed XML: {e}") from e

    for element in root.iter():
        # Comments and processing instructions have non-string tags
        if isinstance(element.tag, str):
            element.tag = etree.QName(element).localname
    etree.cleanup_namespaces(root)
    return root


def _evaluate_xpath(expression: str, document: etree._Element) -> Any:
    query = _compile_xpath(expression)
    try:
        return query(document)
    except etree.XPathEvalError as e:
        raise MatchEvaluationError(f"Cannot evaluate XPath '{expression}': {e}") from e


def _is_truthy(result: Any) -> bool:
    if isinstance(result, list):
        return len(result) > 0
    if isinstance(result, bool):
        return result
    if isinstance(result, float):
        return result != 0 and not math.isnan(result)
    return bool(result)


def _string_value(result: Any) -> Optional[str]:
    """XPath string value of a result; None for an empty node-set."""
    if isinstance(result, list):
        if not result:
            return None
        result = result[0]
    if isinstance(result, etree._Element):
        return "".join(result.itertext())
    if isinstance(result, bool):
        return "true" if result else "false"
    if isinstance(result, float):
        if math.isnan(result):
            return None
        return str(int(result)) if result.is_integer() else str(result)
    return str(result)


def validate_rule(match_type: MatchType, expression: str, variables: Mapping[str, str]) -> None:
    """
    Check that a cue rule can be evaluated, without needing a candidate.

    Raises:
        MatchEvaluationError: For invalid regex or XPath expressions, or an
            `id` rule naming a variable that has not been captured
    """
    match_type = MatchType(match_type)

    if match_type == MatchType.ID:
        if expression not in variables:
            raise MatchEvaluationError(f"Variable '{expression}' has not been captured")
        return

    expression = substitute(expression, variables)
    if match_type == MatchType.REGEX:
        _compile_regex(expression)
    elif match_type == MatchType.XPATH:
        _compile_xpath(expression)


def matches(match_type: MatchType, expression: str, candidate: str,
            variables: Mapping[str, str]) -> bool:
    """
    Decide whether a candidate message satisfies a cue rule.

    Args:
        match_type: Matching rule
        expression: Rule expression; `{{name}}` placeholders are resolved
            from `variables` (for `id` it is the variable name itself)
        candidate: Raw message text
        variables: Current variable values

    Returns:
        True if the candidate matches

    Raises:
        MatchEvaluationError: For invalid patterns, unparseable candidates
            under `xpath`, or unknown variables under `id`
    """
    match_type = MatchType(match_type)

    if match_type == MatchType.ID:
        value = variables.get(expression)
        if value is None:
            raise MatchEvaluationError(f"Variable '{expression}' has not been captured")
        return value in candidate

    expression = substitute(expression, variables)

    if match_type == MatchType.CONTAINS:
        return expression in candidate

    if match_type == MatchType.REGEX:
        return _compile_regex(expression).search(candidate) is not None

    if match_type == MatchType.XPATH:
        # Compile first so a bad expression is reported even for bad candidates
        _compile_xpath(expression)
        return _is_truthy(_evaluate_xpath(expression, parse_document(candidate)))

    raise MatchEvaluationError(f"Unsupported match type: {match_type}")


def evaluate_assertion(assertion_type: AssertionType, expression: str, expected: Optional[str],
                       candidate: str, variables: Mapping[str, str]) -> AssertionResult:
    """
    Evaluate an assertion against a candidate message.

    `contains` ignores `expected` and reports the expression as the
    expected text. `equals` treats `expression` as an XPath pointer and
    compares the extracted string value with `expected`. A pointer that
    cannot be resolved against the candidate is a failed check, not an error.

    Raises:
        MatchEvaluationError: For invalid expressions, or `equals` without
            an expected value
    """
    assertion_type = AssertionType(assertion_type)
    expression = substitute(expression, variables)
    if expected is not None:
        expected = substitute(expected, variables)

    if assertion_type == AssertionType.CONTAINS:
        found = expression in candidate
        return AssertionResult(
            passed=found,
            expected=expression,
            actual=expression if found else None,
        )

    if assertion_type == AssertionType.REGEX:
        found = _compile_regex(expression).search(candidate)
        actual = found.group(0) if found else None
        passed = found is not None and (expected is None or actual == expected)
        return AssertionResult(passed=passed, expected=expected, actual=actual)

    if assertion_type == AssertionType.XPATH:
        _compile_xpath(expression)
        result = _evaluate_xpath(expression, parse_document(candidate))
        actual = _string_value(result)
        passed = _is_truthy(result) and (expected is None or actual == expected)
        return AssertionResult(passed=passed, expected=expected, actual=actual)

    if assertion_type == AssertionType.EQUALS:
        if expected is None:
            raise MatchEvaluationError("An 'equals' assertion requires an expected value")
        _compile_xpath(expression)
        try:
            document = parse_document(candidate)
        except MatchEvaluationError:
            return AssertionResult(passed=False, expected=expected, actual=None)
        actual = _string_value(_evaluate_xpath(expression, document))
        return AssertionResult(passed=actual == expected, expected=expected, actual=actual)

    raise MatchEvaluationError(f"Unsupported assertion type: {assertion_type}")

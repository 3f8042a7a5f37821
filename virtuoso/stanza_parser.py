"""Human-readable field extraction from raw stanzas."""

from dataclasses import dataclass
from typing import List

from virtuoso.composition.matcher import parse_document

_ROOT_ATTRIBUTES = ("type", "id", "from", "to")
_TEXT_CHILDREN = ("subject", "body", "thread")


@dataclass(frozen=True)
class ParsedField:
    name: str
    value: str

    def __str__(self) -> str:
        return f"{self.name}: {self.value}"


def parse_stanza(xml: str) -> List[ParsedField]:
    """
    Extract the fields worth showing a person from a stanza.

    Covers the stanza kind and routing attributes, message text, the error
    condition of error stanzas, the delayed-delivery stamp and the first
    payload element of IQs.

    Raises:
        MatchEvaluationError: If the text is not well-formed XML
    """
    root = parse_document(xml)
    fields = [ParsedField("stanza", root.tag)]

    for attribute in _ROOT_ATTRIBUTES:
        value = root.get(attribute)
        if value is not None:
            fields.append(ParsedField(attribute, value))

    for child_name in _TEXT_CHILDREN:
        child = root.find(child_name)
        if child is not None and child.text:
            fields.append(ParsedField(child_name, child.text.strip()))

    error = root.find("error")
    if error is not None:
        conditions = [c.tag for c in error if isinstance(c.tag, str) and c.tag != "text"]
        if conditions:
            fields.append(ParsedField("error", conditions[0]))
        if error.get("type"):
            fields.append(ParsedField("error_type", error.get("type")))
        text = error.find("text")
        if text is not None and text.text:
            fields.append(ParsedField("error_text", text.text.strip()))

    delay = root.find("delay")
    if delay is not None and delay.get("stamp"):
        fields.append(ParsedField("delay", delay.get("stamp")))

    if root.tag == "iq":
        payload = [c for c in root if isinstance(c.tag, str) and c.tag != "error"]
        if payload:
            fields.append(ParsedField("payload", payload[0].tag))

    return fields

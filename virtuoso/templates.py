"""
Named stanza templates for recording sends.

Each template is XML with `{{field}}` placeholders. Rendering fills them
from keyword values, falling back to the template defaults; a stanza id is
minted when none is given. Values are XML-escaped, and a value that is
itself a `{{variable}}` reference passes through untouched so it can be
resolved when the composition is performed.
"""

from dataclasses import dataclass, field
from typing import Dict, List
from xml.sax.saxutils import escape

from virtuoso.composition.models import generate_id
from virtuoso.composition.variables import placeholders, substitute


@dataclass(frozen=True)
class StanzaTemplate:
    name: str
    description: str
    xml: str
    defaults: Dict[str, str] = field(default_factory=dict)

    @property
    def fields(self) -> List[str]:
        return placeholders(self.xml)


TEMPLATES: Dict[str, StanzaTemplate] = {
    template.name: template
    for template in (
        StanzaTemplate(
            name="presence",
            description="Available presence with show and status",
            xml='<presence id="{{id}}"><show>{{show}}</show><status>{{status}}</status></presence>',
            defaults={"show": "chat", "status": "Available"},
        ),
        StanzaTemplate(
            name="chat",
            description="One-to-one chat message",
            xml='<message type="chat" id="{{id}}" to="{{to}}"><body>{{body}}</body></message>',
        ),
        StanzaTemplate(
            name="groupchat",
            description="Message to a multi-user chat room",
            xml='<message type="groupchat" id="{{id}}" to="{{to}}"><body>{{body}}</body></message>',
        ),
        StanzaTemplate(
            name="iq_ping",
            description="XMPP ping request",
            xml='<iq type="get" id="{{id}}" to="{{to}}"><ping xmlns="urn:xmpp:ping"/></iq>',
        ),
        StanzaTemplate(
            name="iq_version",
            description="Software version request",
            xml='<iq type="get" id="{{id}}" to="{{to}}"><query xmlns="jabber:iq:version"/></iq>',
        ),
        StanzaTemplate(
            name="disco_info",
            description="Service discovery info request",
            xml=('<iq type="get" id="{{id}}" to="{{to}}">'
                 '<query xmlns="http://jabber.org/protocol/disco#info"/></iq>'),
        ),
        StanzaTemplate(
            name="disco_items",
            description="Service discovery items request",
            xml=('<iq type="get" id="{{id}}" to="{{to}}">'
                 '<query xmlns="http://jabber.org/protocol/disco#items"/></iq>'),
        ),
    )
}


def list_templates() -> List[Dict[str, object]]:
    return [
        {"name": t.name, "description": t.description, "fields": t.fields, "defaults": dict(t.defaults)}
        for t in TEMPLATES.values()
    ]


def render_template(name: str, **values: str) -> str:
    """
    Render a named template.

    Args:
        name: Template name (see TEMPLATES)
        **values: Field values; `id` defaults to a freshly minted stanza id

    Returns:
        Stanza XML ready for Composer.capture_send

    Raises:
        KeyError: If the template does not exist
        ValueError: If a field is unknown or a required field has no value
    """
    try:
        template = TEMPLATES[name]
    except KeyError:
        raise KeyError(f"Unknown stanza template: {name}") from None

    fields = template.fields
    unknown = sorted(set(values) - set(fields))
    if unknown:
        raise ValueError(f"Template '{name}' has no fields {unknown}")

    resolved = {"id": generate_id("msg")} if "id" in fields else {}
    resolved.update(template.defaults)
    resolved.update({k: str(v) for k, v in values.items()})

    missing = [f for f in fields if f not in resolved]
    if missing:
        raise ValueError(f"Template '{name}' requires values for {missing}")

    return substitute(template.xml, {k: escape(v, {'"': "&quot;"}) for k, v in resolved.items()})

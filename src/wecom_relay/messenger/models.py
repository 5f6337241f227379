"""Callback payloads received from WeCom and messages sent back to it."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass


def _parse(xml_text: str) -> ET.Element:
    try:
        return ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ValueError(f"malformed XML: {e}") from e


def _text(root: ET.Element, tag: str, required: bool = True, strip: bool = True) -> str:
    node = root.find(tag)
    if node is None:
        if required:
            raise ValueError(f"missing <{tag}>")
        return ""
    text = node.text or ""
    return text.strip() if strip else text


@dataclass(frozen=True, slots=True)
class CallbackEnvelope:
    """Outer callback body.

    <xml>
      <ToUserName><![CDATA[toUser]]></ToUserName>
      <AgentID><![CDATA[toAgentID]]></AgentID>
      <Encrypt><![CDATA[msg_encrypt]]></Encrypt>
    </xml>
    """

    to_user: str
    agent_id: str
    encrypt: str

    @classmethod
    def from_xml(cls, xml_text: str) -> CallbackEnvelope:
        root = _parse(xml_text)
        return cls(
            to_user=_text(root, "ToUserName"),
            agent_id=_text(root, "AgentID", required=False),
            encrypt=_text(root, "Encrypt"),
        )


@dataclass(frozen=True, slots=True)
class AppMessage:
    """Decrypted application message sent by a member to an assistant."""

    to_user: str
    from_user: str
    create_time: int
    msg_type: str
    content: str
    msg_id: str
    agent_id: int

    @classmethod
    def from_xml(cls, xml_text: str) -> AppMessage:
        root = _parse(xml_text)
        try:
            create_time = int(_text(root, "CreateTime", required=False) or 0)
            agent_id = int(_text(root, "AgentID"))
        except ValueError as e:
            raise ValueError(f"invalid numeric field: {e}") from e
        return cls(
            to_user=_text(root, "ToUserName"),
            from_user=_text(root, "FromUserName"),
            create_time=create_time,
            msg_type=_text(root, "MsgType"),
            content=_text(root, "Content", required=False, strip=False),
            msg_id=_text(root, "MsgId", required=False),
            agent_id=agent_id,
        )

    @property
    def is_text(self) -> bool:
        return self.msg_type == "text"


@dataclass(frozen=True, slots=True)
class ContactEvent:
    """Decrypted contact-directory change event (e.g. ``create_user``)."""

    user_id: str
    change_type: str
    event: str = ""

    @classmethod
    def from_xml(cls, xml_text: str) -> ContactEvent:
        root = _parse(xml_text)
        return cls(
            user_id=_text(root, "UserID"),
            change_type=_text(root, "ChangeType"),
            event=_text(root, "Event", required=False),
        )


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    to_user: str
    agent_id: int
    text: str


@dataclass(frozen=True, slots=True)
class SendResult:
    errcode: int = 0
    errmsg: str = "ok"

    @property
    def ok(self) -> bool:
        return self.errcode == 0

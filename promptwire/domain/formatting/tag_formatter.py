from typing import Dict, Any, List, Optional, Union, Mapping

from promptwire.domain.models.records import NodeDescription, AttributeValue


# Content is trusted and inserted verbatim. Only attribute values are
# escaped, so that the opening marker stays well-formed.
_ATTRIBUTE_ESCAPES = {"&": "&amp;", '"': "&quot;", "<": "&lt;", ">": "&gt;"}

SEPARATOR = "\n"


def format_attribute_value(value: AttributeValue) -> str:
    """Stringify an attribute value for the opening marker"""

    if isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)

    return "".join(_ATTRIBUTE_ESCAPES.get(char, char) for char in text)


def format_attributes(attributes: Mapping[str, AttributeValue]) -> str:
    """Render attributes in insertion order, skipping None values"""

    return "".join(
        f' {key}="{format_attribute_value(value)}"'
        for key, value in attributes.items()
        if value is not None
    )


def format_node(node: Union[NodeDescription, Dict[str, Any]]) -> str:
    """Serialize a node description into tagged text"""

    if not isinstance(node, NodeDescription):
        node = NodeDescription.model_validate(node)

    opening = f"<{node.tag}{format_attributes(node.attributes)}"

    if node.content is None:
        return f"{opening} />"

    if isinstance(node.content, str):
        return f"{opening}>{node.content}</{node.tag}>"

    children = [
        child if isinstance(child, str) else format_node(child)
        for child in node.content
        if child is not None
    ]

    if not children:
        return f"{opening}></{node.tag}>"

    return f"{opening}>{SEPARATOR}{SEPARATOR.join(children)}{SEPARATOR}</{node.tag}>"


def format_tag(
    tag: str,
    attributes: Optional[Mapping[str, AttributeValue]] = None,
    content: Union[str, List[Optional[Union[NodeDescription, str]]], None] = None
) -> str:
    """Shortcut for formatting a node built from its parts"""

    return format_node(
        NodeDescription(tag=tag, attributes=dict(attributes or {}), content=content)
    )

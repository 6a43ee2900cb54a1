"""Small helpers for walking Tree-sitter syntax trees.

Only plain node attributes are used (type, children, named_children,
child_by_field_name, start_byte, end_byte) so tests can drive these with
lightweight fake nodes.
"""

from typing import Any, Dict, Iterator, Optional, Tuple

# language -> {call node type: (callee field, receiver field or None)}
# Java splits `a.b()` into object/name; everything else has one callee field.
CALL_NODES: Dict[str, Dict[str, Tuple[str, Optional[str]]]] = {
    "python": {"call": ("function", None)},
    "javascript": {"call_expression": ("function", None), "new_expression": ("constructor", None)},
    "typescript": {"call_expression": ("function", None), "new_expression": ("constructor", None)},
    "tsx": {"call_expression": ("function", None), "new_expression": ("constructor", None)},
    "java": {
        "method_invocation": ("name", "object"),
        "object_creation_expression": ("type", None),
    },
    "c": {"call_expression": ("function", None)},
    "cpp": {"call_expression": ("function", None)},
    "go": {"call_expression": ("function", None)},
}


def iter_nodes(root: Any) -> Iterator[Any]:
    """Depth-first, pre-order traversal without recursion."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        children = getattr(node, "children", None) or ()
        # reversed so the leftmost child is visited first
        stack.extend(reversed(list(children)))


def node_text(node: Any, src: bytes) -> str:
    if node is None:
        return ""
    return src[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


def is_token(node: Any) -> bool:
    """A node with no named children (identifier, string fragment, comment)."""
    return not (getattr(node, "named_children", None) or ())


def _field(node: Any, name: str) -> Any:
    getter = getattr(node, "child_by_field_name", None)
    return getter(name) if getter else None


def callee_text(node: Any, src: bytes, language: str) -> Optional[str]:
    """Callee of a call node with whitespace removed, or None if not a call."""
    spec = CALL_NODES.get(language, {}).get(node.type)
    if spec is None:
        return None
    field, receiver = spec
    fn = _field(node, field)
    if fn is None:
        return None
    text = node_text(fn, src)
    if receiver:
        obj = _field(node, receiver)
        if obj is not None:
            text = f"{node_text(obj, src)}.{text}"
    return "".join(text.split())


def arguments_text(node: Any, src: bytes) -> str:
    return node_text(_field(node, "arguments"), src)


def callee_matches(callee: str, signature: str) -> bool:
    """`hashlib.md5` matches `hashlib.md5` and `self.hashlib.md5`, not `md5`."""
    return callee == signature or callee.endswith("." + signature)

"""Abstract syntax tree nodes produced by the protobuf schema parser."""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class CommentNode:
    """A documentation comment attached to a declaration."""
    text: str
    line: int = 0
    leading: bool = True


@dataclass
class FieldNode:
    """A message field, including map fields and oneof members."""
    name: str
    type: str
    number: int
    line: int = 0
    repeated: bool = False
    optional: bool = False
    required: bool = False
    oneof: Optional[str] = None
    comments: List[CommentNode] = field(default_factory=list)


@dataclass
class OneOfNode:
    """A oneof group inside a message."""
    name: str
    line: int = 0
    fields: List[FieldNode] = field(default_factory=list)
    comments: List[CommentNode] = field(default_factory=list)


@dataclass
class EnumValueNode:
    name: str
    number: int
    line: int = 0
    comments: List[CommentNode] = field(default_factory=list)


@dataclass
class EnumNode:
    name: str
    line: int = 0
    values: List[EnumValueNode] = field(default_factory=list)
    comments: List[CommentNode] = field(default_factory=list)


@dataclass
class MessageNode:
    """A message declaration with its fields and nested declarations."""
    name: str
    line: int = 0
    fields: List[FieldNode] = field(default_factory=list)
    nested: List['MessageNode'] = field(default_factory=list)
    enums: List[EnumNode] = field(default_factory=list)
    oneofs: List[OneOfNode] = field(default_factory=list)
    comments: List[CommentNode] = field(default_factory=list)


@dataclass
class RPCNode:
    name: str
    input_type: str
    output_type: str
    line: int = 0
    client_streaming: bool = False
    server_streaming: bool = False
    comments: List[CommentNode] = field(default_factory=list)


@dataclass
class ServiceNode:
    name: str
    line: int = 0
    rpcs: List[RPCNode] = field(default_factory=list)
    comments: List[CommentNode] = field(default_factory=list)


@dataclass
class ImportNode:
    path: str
    line: int = 0
    public: bool = False
    weak: bool = False


@dataclass
class RootNode:
    """Root of a parsed .proto file."""
    syntax: Optional[str] = None
    package: Optional[str] = None
    imports: List[ImportNode] = field(default_factory=list)
    messages: List[MessageNode] = field(default_factory=list)
    enums: List[EnumNode] = field(default_factory=list)
    services: List[ServiceNode] = field(default_factory=list)

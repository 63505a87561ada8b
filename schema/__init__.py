"""Protobuf schema parsing: the AST consumed by the search indexer."""

from .ast import (
    CommentNode,
    FieldNode,
    OneOfNode,
    EnumValueNode,
    EnumNode,
    MessageNode,
    RPCNode,
    ServiceNode,
    ImportNode,
    RootNode
)
from .parser import ProtoParser, ProtoParseError, parse_proto

__all__ = [
    # AST
    'CommentNode',
    'FieldNode',
    'OneOfNode',
    'EnumValueNode',
    'EnumNode',
    'MessageNode',
    'RPCNode',
    'ServiceNode',
    'ImportNode',
    'RootNode',

    # Parser
    'ProtoParser',
    'ProtoParseError',
    'parse_proto'
]

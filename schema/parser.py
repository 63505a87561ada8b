"""Protobuf schema parser.

Turns the text of a ``.proto`` file into the :mod:`schema.ast` tree consumed by
the search indexer. Only the declarations the indexer needs are modelled
(package, imports, messages, fields, oneofs, enums, services, RPCs); options,
reserved ranges, extensions and ``extend`` blocks are parsed and skipped.

Leading comments (``//`` lines and ``/* */`` blocks written on the lines above
a declaration) are attached to that declaration. A comment that starts on the
same line as the end of the previous statement is a trailing comment and is
discarded.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from .ast import (
    CommentNode, EnumNode, EnumValueNode, FieldNode, ImportNode, MessageNode,
    OneOfNode, RootNode, RPCNode, ServiceNode
)


class ProtoParseError(ValueError):
    """Raised when a .proto file cannot be parsed."""

    def __init__(self, message: str, line: int = 0):
        self.line = line
        super().__init__(f"line {line}: {message}" if line else message)


@dataclass
class Token:
    kind: str  # 'ident', 'int', 'float', 'string', 'symbol', 'comment'
    value: str
    line: int
    end_line: int


_TOKEN_PATTERN = re.compile(r"""
    (?P<ws>[ \t\r\n\f]+)
  | (?P<line_comment>//[^\n]*)
  | (?P<block_comment>/\*.*?\*/)
  | (?P<string>"(?:[^"\\\n]|\\.)*"|'(?:[^'\\\n]|\\.)*')
  | (?P<float>\d+\.\d*(?:[eE][+-]?\d+)?|\d+[eE][+-]?\d+|\.\d+(?:[eE][+-]?\d+)?)
  | (?P<int>0[xX][0-9a-fA-F]+|\d+)
  | (?P<ident>\.?[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)
  | (?P<symbol>[{}()\[\];=<>,:\-+.])
""", re.VERBOSE | re.DOTALL)

# Field labels that may precede a field type
_LABELS = {'repeated', 'optional', 'required'}


def tokenize(content: str) -> List[Token]:
    """Split proto source into tokens, keeping comments."""
    tokens = []
    pos = 0
    line = 1
    length = len(content)

    while pos < length:
        match = _TOKEN_PATTERN.match(content, pos)
        if not match:
            if content.startswith('/*', pos):
                raise ProtoParseError("unterminated block comment", line)
            raise ProtoParseError(f"unexpected character {content[pos]!r}", line)

        kind = match.lastgroup
        text = match.group()
        end_line = line + text.count('\n')

        if kind == 'line_comment':
            tokens.append(Token('comment', text[2:].strip(), line, end_line))
        elif kind == 'block_comment':
            tokens.append(Token('comment', _clean_block_comment(text), line, end_line))
        elif kind == 'string':
            tokens.append(Token('string', _unquote(text), line, end_line))
        elif kind != 'ws':
            tokens.append(Token(kind, text, line, end_line))

        line = end_line
        pos = match.end()

    return tokens


def _clean_block_comment(text: str) -> str:
    """Strip /* */ markers and leading asterisks from a block comment."""
    body = text[2:-2]
    lines = []
    for raw_line in body.split('\n'):
        stripped = raw_line.strip()
        if stripped.startswith('*'):
            stripped = stripped[1:].strip()
        lines.append(stripped)

    # Drop blank lines at the edges
    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()

    return '\n'.join(lines)


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r'\\(.)', r'\1', body)


class ProtoParser:
    """Recursive descent parser for proto2/proto3 files."""

    def __init__(self, content: str):
        self.content = content
        self._tokens: List[Token] = []
        self._pos = 0
        self._last_line = 0
        self._pending_comments: List[CommentNode] = []

    def parse(self) -> RootNode:
        """Parse the file.

        Returns:
            RootNode describing the file

        Raises:
            ProtoParseError: If the content is not valid proto syntax
        """
        self._tokens = tokenize(self.content)
        self._pos = 0
        self._last_line = 0
        self._pending_comments = []

        root = RootNode()

        while self._peek() is not None:
            comments = self._take_comments()
            token = self._next()

            if token.value == ';':
                continue
            if token.kind != 'ident':
                raise ProtoParseError(f"unexpected token {token.value!r}", token.line)

            keyword = token.value
            if keyword in ('syntax', 'edition'):
                self._expect('=')
                root.syntax = self._expect_kind('string').value
                self._expect(';')
            elif keyword == 'package':
                root.package = self._expect_kind('ident').value.lstrip('.')
                self._expect(';')
            elif keyword == 'import':
                root.imports.append(self._parse_import(token))
            elif keyword == 'option':
                self._skip_statement()
            elif keyword == 'message':
                root.messages.append(self._parse_message(token, comments))
            elif keyword == 'enum':
                root.enums.append(self._parse_enum(token, comments))
            elif keyword == 'service':
                root.services.append(self._parse_service(token, comments))
            elif keyword == 'extend':
                self._skip_declaration()
            else:
                raise ProtoParseError(f"unexpected top-level keyword {keyword!r}", token.line)

        return root

    # Token helpers

    def _peek(self) -> Optional[Token]:
        """Return the next non-comment token, collecting leading comments."""
        while self._pos < len(self._tokens):
            token = self._tokens[self._pos]
            if token.kind != 'comment':
                return token
            if token.line != self._last_line:
                self._pending_comments.append(CommentNode(text=token.value, line=token.line))
            self._pos += 1
        return None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise ProtoParseError("unexpected end of file", self._last_line)
        self._pos += 1
        self._last_line = token.end_line
        if token.value == '}':
            # Comments at the end of a block belong to nothing
            self._pending_comments = []
        return token

    def _take_comments(self) -> List[CommentNode]:
        self._peek()
        comments = [c for c in self._pending_comments if c.text]
        self._pending_comments = []
        return comments

    def _expect(self, value: str) -> Token:
        token = self._next()
        if token.value != value or token.kind in ('string', 'comment'):
            raise ProtoParseError(f"expected {value!r}, found {token.value!r}", token.line)
        return token

    def _expect_kind(self, kind: str) -> Token:
        token = self._next()
        if token.kind != kind:
            raise ProtoParseError(f"expected {kind}, found {token.value!r}", token.line)
        return token

    def _accept(self, value: str) -> bool:
        token = self._peek()
        if token is not None and token.value == value and token.kind not in ('string', 'comment'):
            self._next()
            return True
        return False

    def _expect_int(self) -> int:
        negative = self._accept('-')
        token = self._expect_kind('int')
        value = int(token.value, 0) if token.value.lower().startswith('0x') else int(token.value)
        return -value if negative else value

    def _skip_statement(self):
        """Skip tokens up to and including the ';' ending the statement."""
        depth = 0
        while True:
            token = self._next()
            if token.kind == 'symbol':
                if token.value in '{[(':
                    depth += 1
                elif token.value in '}])':
                    depth -= 1
                elif token.value == ';' and depth == 0:
                    return

    def _skip_brackets(self):
        """Skip a balanced [...] field option list, if present."""
        if not self._accept('['):
            return
        depth = 1
        while depth:
            token = self._next()
            if token.value == '[':
                depth += 1
            elif token.value == ']':
                depth -= 1

    def _skip_declaration(self):
        """Skip a declaration that ends with a balanced {...} block."""
        while self._next().value != '{':
            pass
        depth = 1
        while depth:
            token = self._next()
            if token.kind == 'symbol':
                if token.value == '{':
                    depth += 1
                elif token.value == '}':
                    depth -= 1
        self._pending_comments = []

    # Declarations

    def _parse_import(self, keyword: Token) -> ImportNode:
        node = ImportNode(path='', line=keyword.line)
        token = self._next()
        if token.kind == 'ident' and token.value in ('public', 'weak'):
            node.public = token.value == 'public'
            node.weak = token.value == 'weak'
            token = self._next()
        if token.kind != 'string':
            raise ProtoParseError("expected import path string", token.line)
        node.path = token.value
        self._expect(';')
        return node

    def _parse_message(self, keyword: Token, comments: List[CommentNode]) -> MessageNode:
        name = self._expect_kind('ident').value
        message = MessageNode(name=name, line=keyword.line, comments=comments)
        self._expect('{')

        while not self._accept('}'):
            member_comments = self._take_comments()
            token = self._peek()
            if token is None:
                raise ProtoParseError(f"unterminated message {name!r}", keyword.line)
            if token.value == ';':
                self._next()
                continue

            word = token.value
            if word == 'message':
                self._next()
                message.nested.append(self._parse_message(token, member_comments))
            elif word == 'enum':
                self._next()
                message.enums.append(self._parse_enum(token, member_comments))
            elif word == 'oneof':
                self._next()
                oneof = self._parse_oneof(token, member_comments)
                message.oneofs.append(oneof)
                message.fields.extend(oneof.fields)
            elif word in ('option', 'reserved', 'extensions'):
                self._next()
                self._skip_statement()
            elif word == 'extend':
                self._next()
                self._skip_declaration()
            elif word == 'map':
                message.fields.append(self._parse_map_field(member_comments))
            else:
                message.fields.append(self._parse_field(member_comments))

        return message

    def _parse_field(self, comments: List[CommentNode], oneof: Optional[str] = None) -> FieldNode:
        first = self._next()
        if first.kind != 'ident':
            raise ProtoParseError(f"expected field declaration, found {first.value!r}", first.line)

        label = None
        type_token = first
        if first.value in _LABELS:
            # 'optional' may itself be a message type name only if followed by '='
            following = self._peek()
            if following is not None and following.kind == 'ident':
                label = first.value
                type_token = self._next()

        if type_token.value == 'group':
            raise ProtoParseError("proto2 groups are not supported", type_token.line)

        name = self._expect_kind('ident').value
        self._expect('=')
        number = self._expect_int()
        self._skip_brackets()
        self._expect(';')

        return FieldNode(
            name=name,
            type=type_token.value,
            number=number,
            line=first.line,
            repeated=label == 'repeated',
            optional=label == 'optional',
            required=label == 'required',
            oneof=oneof,
            comments=comments
        )

    def _parse_map_field(self, comments: List[CommentNode]) -> FieldNode:
        keyword = self._next()
        self._expect('<')
        key_type = self._expect_kind('ident').value
        self._expect(',')
        value_type = self._expect_kind('ident').value
        self._expect('>')
        name = self._expect_kind('ident').value
        self._expect('=')
        number = self._expect_int()
        self._skip_brackets()
        self._expect(';')

        return FieldNode(
            name=name,
            type=f"map<{key_type}, {value_type}>",
            number=number,
            line=keyword.line,
            comments=comments
        )

    def _parse_oneof(self, keyword: Token, comments: List[CommentNode]) -> OneOfNode:
        name = self._expect_kind('ident').value
        oneof = OneOfNode(name=name, line=keyword.line, comments=comments)
        self._expect('{')

        while not self._accept('}'):
            member_comments = self._take_comments()
            token = self._peek()
            if token is None:
                raise ProtoParseError(f"unterminated oneof {name!r}", keyword.line)
            if token.value == ';':
                self._next()
            elif token.value == 'option':
                self._next()
                self._skip_statement()
            else:
                oneof.fields.append(self._parse_field(member_comments, oneof=name))

        return oneof

    def _parse_enum(self, keyword: Token, comments: List[CommentNode]) -> EnumNode:
        name = self._expect_kind('ident').value
        enum = EnumNode(name=name, line=keyword.line, comments=comments)
        self._expect('{')

        while not self._accept('}'):
            value_comments = self._take_comments()
            token = self._next()
            if token.value == ';':
                continue
            if token.kind != 'ident':
                raise ProtoParseError(f"unexpected token {token.value!r} in enum {name!r}", token.line)
            if token.value in ('option', 'reserved'):
                self._skip_statement()
                continue

            self._expect('=')
            number = self._expect_int()
            self._skip_brackets()
            self._expect(';')
            enum.values.append(EnumValueNode(
                name=token.value, number=number, line=token.line, comments=value_comments
            ))

        return enum

    def _parse_service(self, keyword: Token, comments: List[CommentNode]) -> ServiceNode:
        name = self._expect_kind('ident').value
        service = ServiceNode(name=name, line=keyword.line, comments=comments)
        self._expect('{')

        while not self._accept('}'):
            rpc_comments = self._take_comments()
            token = self._next()
            if token.value == ';':
                continue
            if token.value == 'option':
                self._skip_statement()
            elif token.value == 'rpc':
                service.rpcs.append(self._parse_rpc(token, rpc_comments))
            else:
                raise ProtoParseError(f"unexpected token {token.value!r} in service {name!r}", token.line)

        return service

    def _parse_rpc(self, keyword: Token, comments: List[CommentNode]) -> RPCNode:
        name = self._expect_kind('ident').value
        client_streaming, input_type = self._parse_rpc_type()
        returns = self._expect_kind('ident')
        if returns.value != 'returns':
            raise ProtoParseError(f"expected 'returns', found {returns.value!r}", returns.line)
        server_streaming, output_type = self._parse_rpc_type()

        if self._accept('{'):
            while not self._accept('}'):
                token = self._next()
                if token.value == 'option':
                    self._skip_statement()
                elif token.value != ';':
                    raise ProtoParseError(f"unexpected token {token.value!r} in rpc {name!r}", token.line)
        else:
            self._expect(';')

        return RPCNode(
            name=name,
            input_type=input_type,
            output_type=output_type,
            line=keyword.line,
            client_streaming=client_streaming,
            server_streaming=server_streaming,
            comments=comments
        )

    def _parse_rpc_type(self):
        self._expect('(')
        token = self._expect_kind('ident')
        streaming = False
        if token.value == 'stream':
            following = self._peek()
            if following is not None and following.kind == 'ident':
                streaming = True
                token = self._next()
        self._expect(')')
        return streaming, token.value


def parse_proto(content: str) -> RootNode:
    """Parse proto source text into a RootNode."""
    return ProtoParser(content).parse()

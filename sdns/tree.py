"""Radix tree for URL routing with ``:param`` and ``*wildcard`` segments."""

from __future__ import annotations

import enum
from typing import Any

SEPARATOR = "/"
PARAMETER = ":"
WILDCARD = "*"

_SEP = ord(SEPARATOR)


class _Control(enum.Enum):
    STOP = 0
    BEGIN = 1
    NEXT = 2


class _Node:
    __slots__ = (
        "start_index",
        "end_index",
        "kind",
        "prefix",
        "indices",
        "children",
        "data",
        "parameter",
        "wildcard",
    )

    def __init__(self, prefix: str = "", data: Any = None, kind: str = "") -> None:
        self.start_index = 0
        self.end_index = 0
        self.kind = kind
        self.prefix = prefix
        self.indices: list[int] = []
        self.children: list[_Node | None] = []
        self.data = data
        self.parameter: _Node | None = None
        self.wildcard: _Node | None = None

    def child_for(self, char: int) -> _Node | None:
        if self.start_index <= char < self.end_index:
            index = self.indices[char - self.start_index]
            if index:
                return self.children[index]
        return None

    def split(self, index: int, path: str, data: Any) -> None:
        split_node = self.clone(self.prefix[index:])
        self.reset(self.prefix[:index])
        if path == "":
            self.data = data
            self.add_child(split_node)
            return
        self.add_child(split_node)
        self.append(path, data)

    def clone(self, prefix: str) -> _Node:
        node = _Node(prefix, self.data, self.kind)
        node.indices = self.indices
        node.start_index = self.start_index
        node.end_index = self.end_index
        node.children = self.children
        node.parameter = self.parameter
        node.wildcard = self.wildcard
        return node

    def reset(self, prefix: str) -> None:
        self.prefix = prefix
        self.data = None
        self.parameter = None
        self.wildcard = None
        self.kind = ""
        self.start_index = 0
        self.end_index = 0
        self.indices = []
        self.children = []

    def add_child(self, child: _Node) -> None:
        if not self.children:
            self.children.append(None)

        first = ord(child.prefix[0])

        if self.start_index == 0:
            self.start_index = first
            self.indices = [0]
        elif first < self.start_index:
            self.indices = [0] * (self.start_index - first) + self.indices
            self.start_index = first
        elif first >= self.end_index:
            self.indices = self.indices + [0] * (first - self.end_index + 1)
        self.end_index = self.start_index + len(self.indices)

        slot = first - self.start_index
        index = self.indices[slot]
        if index == 0:
            self.indices[slot] = len(self.children)
            self.children.append(child)
        else:
            self.children[index] = child

    def add_trailing_slash(self, data: Any) -> None:
        if (
            self.prefix.endswith(SEPARATOR)
            or self.kind == WILDCARD
            or self.child_for(_SEP) is not None
        ):
            return
        self.add_child(_Node(SEPARATOR, data))

    def append(self, path: str, data: Any) -> None:
        node = self
        while True:
            if path == "":
                node.data = data
                return

            param_start = path.find(PARAMETER)
            if param_start == -1:
                param_start = path.find(WILDCARD)

            if param_start == -1:
                if node.prefix == "":
                    node.prefix = path
                    node.data = data
                    return
                child = _Node(path, data)
                node.add_child(child)
                child.add_trailing_slash(data)
                return

            if param_start == 0:
                param_end = path.find(SEPARATOR)
                if param_end == -1:
                    param_end = len(path)
                child = _Node(path[1:param_end], kind=path[0])
                if child.kind == PARAMETER:
                    child.add_trailing_slash(data)
                    node.parameter = child
                    node = child
                    path = path[param_end:]
                    continue
                child.data = data
                node.wildcard = child
                return

            if node.prefix == "":
                node.prefix = path[:param_start]
                path = path[param_start:]
                continue

            child = _Node(path[:param_start])
            if child.prefix == SEPARATOR:
                child.data = node.data
            node.add_child(child)
            node = child
            path = path[param_start:]

    def end(self, path: str, data: Any, i: int, offset: int) -> tuple[_Node, int, _Control]:
        child = self.child_for(ord(path[i]))
        if child is not None:
            return child, i, _Control.NEXT
        if self.prefix == "":
            self.append(path[i:], data)
            return self, offset, _Control.STOP
        if self.parameter is not None:
            return self.parameter, i, _Control.BEGIN
        self.append(path[i:], data)
        return self, offset, _Control.STOP


class Tree:
    """Maps route patterns to data; static routes use a plain dictionary."""

    def __init__(self) -> None:
        self._root = _Node()
        self._static: dict[str, Any] = {}
        self._static_lengths: set[int] = set()

    def add(self, path: str, data: Any) -> None:
        """Register ``data`` for the route pattern ``path``."""
        if PARAMETER not in path and WILDCARD not in path:
            self._static[path] = data
            self._static_lengths.add(len(path))
            return

        i = 0
        offset = 0
        node = self._root

        while True:
            if node.kind == PARAMETER:
                if i == len(path):
                    node.data = data
                    return
                if path[i] == SEPARATOR:
                    node, offset, control = node.end(path, data, i, offset)
                    if control is _Control.STOP:
                        return
                    if control is _Control.BEGIN:
                        continue
            else:
                if i == len(path):
                    if i - offset == len(node.prefix):
                        node.data = data
                    else:
                        node.split(i - offset, "", data)
                    return

                if i - offset == len(node.prefix):
                    node, offset, control = node.end(path, data, i, offset)
                    if control is _Control.STOP:
                        return
                    if control is _Control.BEGIN:
                        continue
                elif path[i] != node.prefix[i - offset]:
                    node.split(i - offset, path[i:], data)
                    return
            i += 1

    def lookup(self, path: str) -> tuple[Any, list[tuple[str, str]]]:
        """Return ``(data, params)`` for ``path``; data is None when nothing matches."""
        if len(path) in self._static_lengths and path in self._static:
            return self._static[path], []

        params: list[tuple[str, str]] = []
        n = len(path)
        i = 0
        offset = 0
        last_wildcard: _Node | None = None
        last_wildcard_offset = 0
        node = self._root

        while True:
            if i == n:
                if i - offset == len(node.prefix):
                    return node.data, params
                return None, []

            if i - offset == len(node.prefix):
                if node.wildcard is not None:
                    last_wildcard = node.wildcard
                    last_wildcard_offset = i

                child = node.child_for(ord(path[i]))
                if child is not None:
                    node = child
                    offset = i
                    i += 1
                    continue

                if node.parameter is not None:
                    node = node.parameter
                    offset = i
                    i += 1
                    while True:
                        if i == n:
                            params.append((node.prefix, path[offset:i]))
                            return node.data, params
                        if path[i] == SEPARATOR:
                            params.append((node.prefix, path[offset:i]))
                            slash = node.child_for(_SEP)
                            if slash is None:
                                return None, []
                            node = slash
                            offset = i
                            i += 1
                            break
                        i += 1
                    continue

                if node.wildcard is not None:
                    params.append((node.wildcard.prefix, path[i:]))
                    return node.wildcard.data, params

                return None, []

            if path[i] != node.prefix[i - offset]:
                if last_wildcard is not None:
                    params.append((last_wildcard.prefix, path[last_wildcard_offset:]))
                    return last_wildcard.data, params
                return None, []

            i += 1
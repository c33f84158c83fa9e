#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Type hints used internally by this package. Intended to be star-imported.
"""

from __future__ import annotations

from typing import (
    Dict, List, Optional, Union, Any, TypeVar, Tuple, overload,
    Callable, Awaitable, Iterable, Iterator, AsyncIterator, AsyncIterable,
    Mapping, MutableMapping, Sequence, Set, FrozenSet, Type,
    AsyncContextManager, NamedTuple, cast,
  )

from types import TracebackType

from typing_extensions import Self, TypeAlias

Jsonable: TypeAlias = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]
"""A type that can be serialized to JSON."""

JsonableDict: TypeAlias = Dict[str, Jsonable]
"""A dict that can be serialized to JSON."""

HostAndPort: TypeAlias = Tuple[str, int]
"""A (host, port) tuple as used by socket addresses."""

XmlValue: TypeAlias = Union[str, Dict[str, Any], List[Any], None]
"""A value produced by converting an XML element into plain Python data."""

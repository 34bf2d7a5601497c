#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Type hints used internally by this package"""

from __future__ import annotations

from typing import (
    Dict, List, Optional, Union, Any, TypeVar, Tuple, Set, Type, cast,
    Callable, Awaitable, Iterable, Iterator, Sequence, Mapping, MutableMapping,
    AsyncIterator, AsyncIterable, AsyncContextManager,
  )

from types import TracebackType

from typing_extensions import Self, TypeAlias

Jsonable: TypeAlias = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]
"""A type hint for a value that can be serialized to JSON"""

JsonableDict: TypeAlias = Dict[str, Jsonable]
"""A type hint for a JSON object"""

HostAndPort: TypeAlias = Tuple[str, int]
"""A type hint for a (host, port) socket address"""

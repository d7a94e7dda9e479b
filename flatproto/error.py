# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
"""
Exceptions raised by the runtime
"""
from typing import Optional


class FlatprotoError(Exception):
    """Base class of all errors raised by flatproto"""


class BuilderError(FlatprotoError):
    """The builder was used in a way that would corrupt the buffer"""


class SchemaError(FlatprotoError):
    """A layout table or struct definition is inconsistent"""


class OutOfRangeError(FlatprotoError, IndexError):
    def __init__(self, index: int, size: int) -> None:
        super().__init__("Index %d out of range for length %d" % (index, size))
        self.index = index
        self.size = size


class VerificationError(FlatprotoError):
    def __init__(self, message: str, position: Optional[int] = None) -> None:
        if position is not None:
            message = "%s at position %d" % (message, position)
        super().__init__(message)
        self.position = position


class UnionTypeError(FlatprotoError):
    def __init__(self, expected: int, found: int) -> None:
        super().__init__(
            "Expected union discriminant %d but found %d" % (expected, found)
        )
        self.expected = expected
        self.found = found


class ReadOnlyBufferError(FlatprotoError):
    def __init__(self) -> None:
        super().__init__(
            "Buffer is read only, open a bytearray to mutate it in place"
        )

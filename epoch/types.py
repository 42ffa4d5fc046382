"""Sized numeric marker types.

Plain ``int`` and ``float`` document as int64 / double. Annotate with these when the
wire type is narrower or unsigned:

    count: UInt32
    ratio: Float32
"""

from typing import NewType

Int8 = NewType("Int8", int)
Int16 = NewType("Int16", int)
Int32 = NewType("Int32", int)
Int64 = NewType("Int64", int)

UInt8 = NewType("UInt8", int)
UInt16 = NewType("UInt16", int)
UInt32 = NewType("UInt32", int)
UInt64 = NewType("UInt64", int)

Float32 = NewType("Float32", float)
Float64 = NewType("Float64", float)

# marker -> (bits, signed)
INTEGER_WIDTHS = {
    Int8: (8, True),
    Int16: (16, True),
    Int32: (32, True),
    Int64: (64, True),
    UInt8: (8, False),
    UInt16: (16, False),
    UInt32: (32, False),
    UInt64: (64, False),
}

FLOAT_WIDTHS = {
    Float32: 32,
    Float64: 64,
}

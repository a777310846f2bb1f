"""Remote board integration -- column mappings, value codec and GraphQL client.

Provides:
- COLUMN_MAPPINGS / get_mapping(): static per-entity column tables
- encode() / decode() / encode_record() / decode_columns(): pure value codec
- BoardClient: async GraphQL client with retry and error normalization
- BoardAPIError family: normalized remote failures
"""

from src.gymsync.boards.client import BoardClient
from src.gymsync.boards.codec import decode, decode_columns, encode, encode_record
from src.gymsync.boards.errors import (
    BoardAPIError,
    BoardItemNotFoundError,
    BoardRateLimitError,
    BoardTransientError,
)
from src.gymsync.boards.mapping import (
    COLUMN_MAPPINGS,
    ColumnMapping,
    EntityType,
    ValueKind,
    get_mapping,
)

__all__ = [
    "BoardAPIError",
    "BoardClient",
    "BoardItemNotFoundError",
    "BoardRateLimitError",
    "BoardTransientError",
    "COLUMN_MAPPINGS",
    "ColumnMapping",
    "EntityType",
    "ValueKind",
    "decode",
    "decode_columns",
    "encode",
    "encode_record",
    "get_mapping",
]

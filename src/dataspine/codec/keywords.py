"""Reserved keys of the extended-JSON wire format."""

ID = "_id"
DATE = "$date"
UUID = "$uuid"
OBJECT_ID = "$objectId"
BINARY = "$binary"
VECTOR = "$vector"
VECTORIZE = "$vectorize"
SIMILARITY = "$similarity"

# Wrapper keys an untyped identifier may arrive in
ID_WRAPPERS = frozenset({DATE, UUID, OBJECT_ID})

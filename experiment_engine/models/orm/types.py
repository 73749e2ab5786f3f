from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON

# Opaque payloads: JSONB on PostgreSQL, plain JSON everywhere else.
JSON_TYPE = JSON().with_variant(JSONB(), "postgresql")

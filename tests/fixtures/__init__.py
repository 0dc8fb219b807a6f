# Test fixtures for msgrecover
from tests.fixtures.databases import (
    create_chat_db as create_chat_db,
    create_minimal_sqlite_db as create_minimal_sqlite_db,
    insert_rows as insert_rows,
)
from tests.fixtures.generators import (
    create_chat_export as create_chat_export,
    create_sample_export as create_sample_export,
    edit_history_blob as edit_history_blob,
)
from tests.fixtures.typedstream_samples import (
    TypedStreamWriter as TypedStreamWriter,
    attributed_body as attributed_body,
    string_body as string_body,
)

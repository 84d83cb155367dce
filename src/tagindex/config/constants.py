"""Configuration constants.

Values here are implementation limits and identifiers, not user-configurable.
For configurable values, see models.py.
"""

BATCH_SIZE_MAX = 10_000
"""Upper bound for entries per committed transaction."""

PATHS_AND_SIGNATURES_LIMIT_MAX = 1000
"""Maximum paths returned by one get_paths_and_signatures() page."""

SNIPPETS_ARTIFACT_ID = "codeSnippets"
"""Artifact identifier of the code snippets index, used in its tags."""

TAG_SEPARATOR = "::"
"""Separator of the string form of a tag: directory::branch::artifact_id."""

WORKSPACE_DIR_NAME = ".tagindex"
"""Per-workspace directory for config and the default index location."""

INDEX_DB_NAME = "index.db"

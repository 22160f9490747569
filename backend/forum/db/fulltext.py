"""
Full-text indexes over conversation titles, user names and message content.

Postgres uses GIN indexes over to_tsvector(); SQLite (development and tests)
uses FTS5 external-content tables kept in sync by triggers. Both are created
alongside their source tables through DDL events, so `metadata.create_all()`
produces a searchable schema on either backend.
"""

from dataclasses import dataclass

from sqlalchemy import DDL, Table, event

from forum.config import get_settings
from forum.db.models import Conversation, Message, User

settings = get_settings()


@dataclass(frozen=True)
class FullTextIndex:
    """A searchable text column and the name of the index that covers it."""

    name: str
    table: str
    column: str

    def sqlite_statements(self) -> list[str]:
        """FTS5 virtual table plus the triggers that mirror writes into it."""
        return [
            f"""
            CREATE VIRTUAL TABLE "{self.name}" USING fts5(
                content = "{self.table}",
                content_rowid = "id",
                "{self.column}",
                tokenize = 'porter'
            )
            """,
            f"""
            CREATE TRIGGER "{self.name}_insert" AFTER INSERT ON "{self.table}" BEGIN
                INSERT INTO "{self.name}" ("rowid", "{self.column}") VALUES ("new"."id", "new"."{self.column}");
            END
            """,
            f"""
            CREATE TRIGGER "{self.name}_update" AFTER UPDATE ON "{self.table}" BEGIN
                INSERT INTO "{self.name}" ("{self.name}", "rowid", "{self.column}") VALUES ('delete', "old"."id", "old"."{self.column}");
                INSERT INTO "{self.name}" ("rowid", "{self.column}") VALUES ("new"."id", "new"."{self.column}");
            END
            """,
            f"""
            CREATE TRIGGER "{self.name}_delete" AFTER DELETE ON "{self.table}" BEGIN
                INSERT INTO "{self.name}" ("{self.name}", "rowid", "{self.column}") VALUES ('delete', "old"."id", "old"."{self.column}");
            END
            """,
        ]

    def postgresql_statements(self, language: str) -> list[str]:
        return [
            f"""
            CREATE INDEX "{self.name}" ON "{self.table}"
            USING gin (to_tsvector('{language}', "{self.column}"))
            """
        ]


CONVERSATION_TITLE_INDEX = FullTextIndex(
    name="conversations_title_search_index", table="conversations", column="title_search"
)
USER_NAME_INDEX = FullTextIndex(
    name="users_name_search_index", table="users", column="name_search"
)
MESSAGE_CONTENT_INDEX = FullTextIndex(
    name="messages_content_search_index", table="messages", column="content_search"
)

FULL_TEXT_INDEXES = (CONVERSATION_TITLE_INDEX, USER_NAME_INDEX, MESSAGE_CONTENT_INDEX)


def _attach(table: Table, index: FullTextIndex) -> None:
    for statement in index.sqlite_statements():
        event.listen(table, "after_create", DDL(statement).execute_if(dialect="sqlite"))
    for statement in index.postgresql_statements(settings.search_language):
        event.listen(table, "after_create", DDL(statement).execute_if(dialect="postgresql"))
    event.listen(
        table,
        "before_drop",
        DDL(f'DROP TABLE IF EXISTS "{index.name}"').execute_if(dialect="sqlite"),
    )


_attach(Conversation.__table__, CONVERSATION_TITLE_INDEX)
_attach(User.__table__, USER_NAME_INDEX)
_attach(Message.__table__, MESSAGE_CONTENT_INDEX)

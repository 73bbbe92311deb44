"""
Tests for database logging.
"""

import logging

from catalog_ingest.db.models import IngestLog
from catalog_ingest.utils.logging import DatabaseLogHandler


def make_record(event, level=logging.INFO):
    return logging.LogRecord(
        name="ingest", level=level, pathname=__file__, lineno=1,
        msg=event, args=None, exc_info=None,
    )


class TestDatabaseLogHandler:
    """Test that structured events are persisted."""

    def test_persists_event_and_run_id(self, db):
        handler = DatabaseLogHandler()

        handler.emit(make_record({
            "event": "Hydrated batch",
            "ingest_run_id": "run-1",
            "requested": 5,
            "subject": "fiction",
            "timestamp": "2024-01-01T00:00:00",
            "_record": object(),
        }))

        with db.get_db_session() as session:
            log = session.query(IngestLog).one()
            assert log.level == "INFO"
            assert log.message == "Hydrated batch"
            assert log.ingest_run_id == "run-1"
            assert log.details == {"requested": 5, "subject": "fiction"}

    def test_plain_messages_are_persisted(self, db):
        DatabaseLogHandler().emit(make_record("plain text", level=logging.WARNING))

        with db.get_db_session() as session:
            log = session.query(IngestLog).one()
            assert log.message == "plain text"
            assert log.level == "WARNING"
            assert log.details is None

    def test_prunes_oldest_logs(self, db):
        handler = DatabaseLogHandler(max_logs=2)

        for i in range(4):
            handler.emit(make_record({"event": f"event {i}"}))

        with db.get_db_session() as session:
            assert session.query(IngestLog).count() == 2

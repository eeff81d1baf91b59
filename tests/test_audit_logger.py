import logging
import threading
import time

from arkan.services.audit_logger import (
    AuditCategory,
    AuditEvent,
    AuditLevel,
    AuditLogger,
    DatabaseAuditSink,
    MemoryAuditSink,
    SYSTEM_SCOPE,
)


class FlakySink(MemoryAuditSink):
    def __init__(self):
        super().__init__()
        self.down = False

    def write(self, entry):
        if self.down:
            raise ConnectionError("audit store unavailable")
        super().write(entry)


def test_sequences_are_per_scope(audit, audit_sink):
    audit.log_info("co-a", AuditEvent.RECORD_CREATED, "one", "واحد")
    audit.log_info("co-b", AuditEvent.RECORD_CREATED, "one", "واحد")
    audit.log_info("co-a", AuditEvent.RECORD_UPDATED, "two", "اثنان")

    a = [e.sequence for e in audit_sink.entries if e.scope == "co-a"]
    b = [e.sequence for e in audit_sink.entries if e.scope == "co-b"]
    assert a == [1, 2]
    assert b == [1]


def test_entry_is_bilingual_and_structured(audit):
    entry = audit.log_warning(
        "co-a", AuditEvent.CROSS_TENANT_ACCESS, "blocked", "تم المنع",
        {"attempted_company_id": "co-b"}, category=AuditCategory.SECURITY,
    )
    assert entry.level == AuditLevel.WARNING
    assert entry.message_ar == "تم المنع"
    assert entry.to_dict()["metadata"] == {"attempted_company_id": "co-b"}
    assert entry.to_dict()["category"] == "security"


def test_missing_scope_goes_to_system(audit):
    entry = audit.log_info(None, AuditEvent.QUEUE_PROCESSED, "x", "x")
    assert entry.scope == SYSTEM_SCOPE


def test_sink_failure_never_raises_and_is_buffered():
    sink = FlakySink()
    audit = AuditLogger(sink, buffer_size=10)
    sink.down = True

    first = audit.log_info("co-a", AuditEvent.RECORD_CREATED, "one", "واحد")
    second = audit.log_info("co-a", AuditEvent.RECORD_CREATED, "two", "اثنان")

    assert first is not None and second is not None
    assert sink.entries == []
    assert [e.sequence for e in audit.buffered] == [1, 2]

    sink.down = False
    audit.log_info("co-a", AuditEvent.RECORD_CREATED, "three", "ثلاثة")
    assert [e.sequence for e in sink.entries] == [1, 2, 3]
    assert audit.buffered == []


def test_flush_buffer_replays_in_order():
    sink = FlakySink()
    audit = AuditLogger(sink)
    sink.down = True
    audit.log_info("co-a", AuditEvent.RECORD_CREATED, "one", "واحد")
    sink.down = False

    assert audit.flush_buffer() == 1
    assert sink.entries[0].message_en == "one"


def test_full_buffer_drops_oldest():
    sink = FlakySink()
    sink.down = True
    audit = AuditLogger(sink, buffer_size=2)
    for i in range(3):
        audit.log_info("co-a", AuditEvent.RECORD_CREATED, str(i), str(i))
    assert [e.message_en for e in audit.buffered] == ["1", "2"]


def test_mirrored_to_python_logging(audit, caplog):
    with caplog.at_level(logging.INFO, logger="arkan.audit"):
        audit.log_info("co-a", AuditEvent.COMPANY_CREATED, "Company created", "تم إنشاء الشركة")
    assert any("COMPANY_CREATED" in r.getMessage() for r in caplog.records)


def test_list_entries_filters(audit):
    audit.log_info("co-a", AuditEvent.RECORD_CREATED, "a", "a", category=AuditCategory.PAYMENT)
    audit.log_error("co-a", AuditEvent.SWEEP_TENANT_FAILED, "b", "b", category=AuditCategory.AUTOMATION)
    audit.log_info("co-b", AuditEvent.RECORD_CREATED, "c", "c", category=AuditCategory.PAYMENT)

    assert [e.message_en for e in audit.list_entries(scope="co-a")] == ["a", "b"]
    assert [e.message_en for e in audit.list_entries(category="payment")] == ["a", "c"]
    assert [e.message_en for e in audit.list_entries(level="error")] == ["b"]


def test_database_sink_persists_and_resumes_sequence(session_factory):
    audit = AuditLogger(DatabaseAuditSink(session_factory))
    audit.log_info("co-a", AuditEvent.RECORD_CREATED, "one", "واحد", {"k": 1})
    audit.log_info("co-a", AuditEvent.RECORD_CREATED, "two", "اثنان")

    restarted = AuditLogger(DatabaseAuditSink(session_factory))
    entry = restarted.log_info("co-a", AuditEvent.RECORD_CREATED, "three", "ثلاثة")
    assert entry.sequence == 3

    stored = restarted.list_entries(scope="co-a")
    assert [e.sequence for e in stored] == [1, 2, 3]
    assert stored[0].metadata == {"k": 1}


class SlowScopeSink(MemoryAuditSink):
    """Blocks writes for one scope until released."""

    def __init__(self, slow_scope):
        super().__init__()
        self.slow_scope = slow_scope
        self.entered = threading.Event()
        self.release = threading.Event()

    def write(self, entry):
        if entry.scope == self.slow_scope:
            self.entered.set()
            self.release.wait(timeout=5)
        super().write(entry)


def test_slow_scope_does_not_block_other_scopes():
    sink = SlowScopeSink("co-alpha")
    audit = AuditLogger(sink)
    worker = threading.Thread(
        target=audit.log_info, args=("co-alpha", AuditEvent.RECORD_CREATED, "slow", "بطيء"),
    )
    worker.start()
    assert sink.entered.wait(timeout=2)

    started = time.monotonic()
    entry = audit.log_info("co-beta", AuditEvent.RECORD_CREATED, "fast", "سريع")
    elapsed = time.monotonic() - started

    sink.release.set()
    worker.join(timeout=5)
    assert elapsed < 0.5
    assert entry.sequence == 1
    assert [e.scope for e in sink.entries] == ["co-beta", "co-alpha"]


def test_buffers_are_kept_per_scope():
    sink = FlakySink()
    audit = AuditLogger(sink)
    sink.down = True
    audit.log_info("co-a", AuditEvent.RECORD_CREATED, "a1", "a1")
    sink.down = False

    # co-b writes straight through while co-a still has a backlog
    audit.log_info("co-b", AuditEvent.RECORD_CREATED, "b1", "b1")
    assert [e.message_en for e in sink.entries] == ["b1"]
    assert [e.message_en for e in audit.buffered] == ["a1"]

    audit.log_info("co-a", AuditEvent.RECORD_CREATED, "a2", "a2")
    assert [e.message_en for e in sink.entries] == ["b1", "a1", "a2"]

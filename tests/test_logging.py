import json
import logging
import unittest

from permagate.logging_config import (
    AuditLogger,
    StructuredFormatter,
    get_request_id,
    set_request_id,
)


class RecordingHandler(logging.Handler):

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestAuditLogger(unittest.TestCase):

    def setUp(self):
        self.handler = RecordingHandler()
        self.logger = logging.getLogger("permagate.audit.test")
        self.logger.addHandler(self.handler)
        self.logger.propagate = False
        self.audit = AuditLogger("permagate.audit.test")

    def tearDown(self):
        self.logger.removeHandler(self.handler)

    def test_ticket_token_masked(self):
        self.audit.ticket_issued("t1", "r1", "0123456789abcdef", 100)
        fields = self.handler.records[0].extra_fields
        self.assertEqual(fields["event_type"], "TICKET_ISSUED")
        self.assertEqual(fields["token"], "************cdef")

    def test_request_id_attached(self):
        rid = set_request_id("req-42")
        self.assertEqual(get_request_id(), "req-42")
        self.audit.payment_consumed("tx1", "repo_init")
        self.assertEqual(self.handler.records[0].extra_fields["request_id"], rid)
        set_request_id("")

    def test_rejection_level(self):
        self.audit.operation_rejected("register_repo", "repo_exists", owner="alice")
        record = self.handler.records[0]
        self.assertEqual(record.levelno, logging.WARNING)
        self.assertEqual(record.extra_fields["owner"], "alice")

    def test_security_event_severity(self):
        self.audit.security_event("signature_rejected", severity="high", signer="abc")
        self.assertEqual(self.handler.records[0].levelno, logging.ERROR)


class TestStructuredFormatter(unittest.TestCase):

    def test_json_output(self):
        record = logging.LogRecord("permagate.db", logging.INFO, __file__, 10, "opened %s", ("x",), None)
        record.extra_fields = {"event_type": "X", "amount": 5}
        data = json.loads(StructuredFormatter().format(record))
        self.assertEqual(data["message"], "opened x")
        self.assertEqual(data["level"], "INFO")
        self.assertEqual(data["event_type"], "X")
        self.assertEqual(data["amount"], 5)


if __name__ == "__main__":
    unittest.main()

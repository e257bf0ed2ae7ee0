"""
Test suite for structured logging
"""

import json
import logging

from shg_finance.logging_config import JSONFormatter, get_logger, log_action, setup_logging


class TestStructuredLogging:
    """JSON log records carrying action context"""
    
    def teardown_method(self):
        logger = logging.getLogger("shg_finance")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
    
    def test_get_logger_is_namespaced(self):
        assert get_logger("loans").name == "shg_finance.loans"
        assert get_logger("shg_finance.loans").name == "shg_finance.loans"
        assert get_logger().name == "shg_finance"
    
    def test_json_formatter_drops_empty_fields(self):
        record = logging.LogRecord("shg_finance.ledger", logging.INFO, __file__, 1,
                                   "Recorded entry", (), None)
        record.action = "ledger_entry_recorded"
        
        entry = json.loads(JSONFormatter().format(record))
        
        assert entry["level"] == "INFO"
        assert entry["message"] == "Recorded entry"
        assert entry["action"] == "ledger_entry_recorded"
        assert "user_id" not in entry
    
    def test_log_action_to_file(self, tmp_path):
        log_file = tmp_path / "shg.log"
        setup_logging("INFO", log_file=str(log_file))
        
        log_action(get_logger("loans"), "info", "Loan created", user_id="m1",
                   action="loan_created", resource="loan:l1", extra={"amount": 5000})
        for handler in logging.getLogger("shg_finance").handlers:
            handler.flush()
        
        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["user_id"] == "m1"
        assert entry["action"] == "loan_created"
        assert entry["resource"] == "loan:l1"
        assert entry["extra"] == {"amount": 5000}
    
    def test_level_filtering(self, tmp_path):
        log_file = tmp_path / "shg.log"
        setup_logging("WARNING", log_file=str(log_file))
        
        log_action(get_logger("loans"), "info", "Hidden")
        log_action(get_logger("loans"), "warning", "Shown")
        for handler in logging.getLogger("shg_finance").handlers:
            handler.flush()
        
        lines = log_file.read_text().strip().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["message"] == "Shown"
    
    def test_text_format(self, tmp_path):
        log_file = tmp_path / "shg.log"
        setup_logging("INFO", log_format="text", log_file=str(log_file))
        
        get_logger("savings").info("Cycle initiated")
        for handler in logging.getLogger("shg_finance").handlers:
            handler.flush()
        
        assert "INFO shg_finance.savings: Cycle initiated" in log_file.read_text()

"""The PII gate must pass on runtime code and catch unredacted guest data."""

from pathlib import Path

from scripts.gate_security_pii import check_file, check_source

SRC = Path(__file__).parent.parent / "src"


def test_runtime_code_passes_gate():
    errors = []
    for pyfile in sorted(SRC.rglob("*.py")):
        errors.extend(check_file(pyfile))
    assert errors == []


def test_print_is_flagged():
    assert check_source('print("hello")\n')


def test_unredacted_email_in_logger_call_is_flagged():
    source = (
        "logger.info(\n"
        '    "guest", extra={"extra_fields": {"email": guest.email}}\n'
        ")\n"
    )
    errors = check_source(source)
    assert any("email" in e for e in errors)


def test_redacted_logger_call_passes():
    source = (
        "logger.info(\n"
        '    "guest",\n'
        '    extra={"extra_fields": safe_log_context(email=guest.email)},\n'
        ")\n"
    )
    assert check_source(source) == []


def test_comment_is_ignored():
    assert check_source("# print(secret)\n") == []

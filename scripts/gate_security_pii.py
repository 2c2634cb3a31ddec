#!/usr/bin/env python3
"""Security & PII gate for runtime code.

Fails if:
- print( found in runtime code (src/**)
- A logger call mentions guest data (email, phone, names, payloads)
  without going through safe_log_context / redact_value

Usage:
    python scripts/gate_security_pii.py
"""

import re
import sys
from pathlib import Path

# Fragments that must not reach a logger call unredacted
SENSITIVE_KEYWORDS = (
    "email",
    "phone",
    "first_name",
    "last_name",
    "primary_guest",
    "guest.",
    "request.body",
    "raw",
)

PRINT_PATTERN = re.compile(r"\bprint\s*\(")

LOGGER_CALL_PATTERN = re.compile(
    r"logger\.(debug|info|warning|error|critical|exception)\s*\("
)

REDACTION_PATTERNS = (
    "safe_log_context",
    "redact_value",
    "redact_string",
)

# A logger call and its extra= kwargs usually span a few lines
_CALL_WINDOW = 12


def _code_part(line: str) -> str:
    return line.split("#", 1)[0]


def check_source(content: str, filename: str = "<string>") -> list[str]:
    """Return violations found in one module's source."""
    errors = []
    lines = content.splitlines()

    for lineno, line in enumerate(lines, start=1):
        code = _code_part(line)
        if not code.strip():
            continue

        if PRINT_PATTERN.search(code):
            errors.append(f"{filename}:{lineno}: print() not allowed in runtime code")

        if not LOGGER_CALL_PATTERN.search(code):
            continue

        window = [_code_part(w) for w in lines[lineno - 1 : lineno - 1 + _CALL_WINDOW]]
        # Stop at the end of this call: the first line closing it at depth 0
        depth = 0
        call_lines = []
        for w in window:
            call_lines.append(w)
            depth += w.count("(") - w.count(")")
            if depth <= 0:
                break
        call_text = "\n".join(call_lines)

        if any(rp in call_text for rp in REDACTION_PATTERNS):
            continue
        lowered = call_text.lower()
        for keyword in SENSITIVE_KEYWORDS:
            if keyword in lowered:
                errors.append(
                    f"{filename}:{lineno}: logger call with '{keyword}' "
                    "must use redaction (safe_log_context/redact_value)"
                )
    return errors


def check_file(filepath: Path) -> list[str]:
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []
    return check_source(content, str(filepath))


def main() -> int:
    src_dir = Path("src")
    if not src_dir.exists():
        src_dir = Path(__file__).parent.parent / "src"
    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("PII gate FAILED:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("PII gate PASSED\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())

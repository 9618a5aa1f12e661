"""
Structured-output recovery for model responses.

Models return JSON in three common wrappings: bare, inside a markdown fence,
or embedded in prose. Each strategy below gets one shot at the text and
reports a ParseOutcome; parse_model_json tries them in order and never raises.
"""
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

_FENCE_RE = re.compile(r'```[ \t]*(?:json|JSON|javascript)?[ \t]*\r?\n?(.*?)```', re.DOTALL)

# Bracket scan gives up after this many candidate openings
_MAX_SCAN_CANDIDATES = 20


@dataclass
class ParseOutcome:
    ok: bool
    value: Any = None
    strategy: Optional[str] = None
    error: Optional[str] = None


def _loads(text: str, strategy: str) -> ParseOutcome:
    try:
        return ParseOutcome(ok=True, value=json.loads(text), strategy=strategy)
    except (json.JSONDecodeError, TypeError) as e:
        return ParseOutcome(ok=False, strategy=strategy, error=str(e))


def parse_direct(text: str) -> ParseOutcome:
    """The whole response is JSON."""
    return _loads(text.strip(), 'direct')


def parse_fenced_block(text: str) -> ParseOutcome:
    """JSON inside a ``` or ```json fence; the first fence that parses wins."""
    blocks = _FENCE_RE.findall(text)
    if not blocks:
        return ParseOutcome(ok=False, strategy='fenced_block', error='no fenced block found')
    last = None
    for block in blocks:
        last = _loads(block.strip(), 'fenced_block')
        if last.ok:
            return last
    return last


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index just past the bracket closing text[start], honouring JSON strings."""
    stack = []
    in_string = False
    escaped = False
    pairs = {'{': '}', '[': ']'}
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in pairs:
            stack.append(pairs[ch])
        elif ch in ('}', ']'):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return i + 1
    return None


def parse_bracket_scan(text: str) -> ParseOutcome:
    """First balanced [...] or {...} substring that parses as JSON."""
    attempts = 0
    for match in re.finditer(r'[\[{]', text):
        if attempts >= _MAX_SCAN_CANDIDATES:
            break
        attempts += 1
        end = _balanced_end(text, match.start())
        if end is None:
            continue
        outcome = _loads(text[match.start():end], 'bracket_scan')
        if outcome.ok:
            return outcome
    return ParseOutcome(ok=False, strategy='bracket_scan', error='no balanced JSON substring found')


PARSE_STRATEGIES: List[Tuple[str, Callable[[str], ParseOutcome]]] = [
    ('direct', parse_direct),
    ('fenced_block', parse_fenced_block),
    ('bracket_scan', parse_bracket_scan),
]


def parse_model_json(text: Optional[str]) -> ParseOutcome:
    """Run the strategies in order and return the first success."""
    if not text or not text.strip():
        return ParseOutcome(ok=False, error='empty response')
    errors = []
    for name, strategy in PARSE_STRATEGIES:
        outcome = strategy(text)
        if outcome.ok:
            return outcome
        errors.append(f"{name}: {outcome.error}")
    return ParseOutcome(ok=False, error='; '.join(errors))

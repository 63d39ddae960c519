"""
Vulnerability detectors for Move smart contracts.

Every detector is a piece of static metadata (severity, title, description,
recommendation) plus a line scanner that returns the 1-indexed lines it
flags. All regular expressions are compiled once, here, at import time.

Active by default:
- Reentrancy (external transfer followed by a state change within 4 lines)
- Integer Overflow / Unchecked Arithmetic / Missing Error Handling
  (unguarded +, -, / in an assignment)
- Access Control (state change with no owner assertion nearby, skipping
  lines already explained by the four detectors above)

Experimental (opt-in): unbounded loops, unchecked generics, price oracle
manipulation, precision loss, account registration, global resource
storage, business logic flaws, Option extract/borrow misuse.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Set, Tuple

from .source import split_lines
from .utils import Finding, Location, Severity

LineScanner = Callable[[Sequence[str]], List[int]]

# ---------- Trigger / guard patterns ----------

_EXTERNAL_CALL  = re.compile(r"coin::transfer|account::withdraw")
_STATE_CHANGE   = re.compile(r"borrow_global_mut|move_to|Table::add")
_ADDITION       = re.compile(r"[=]\s*[^;\n]+\+[^;\n]+;")
_SUBTRACTION    = re.compile(r"[=]\s*[^;\n]+-[^;\n]+;")
_DIVISION       = re.compile(r"[=]\s*[^;\n]+/[^;\n]+;")
_OWNER_CHECK    = re.compile(r"assert!\(.*owner.*\)")

_WHILE_LOOP     = re.compile(r"while\s*\(")
_GENERIC_FN     = re.compile(r"public\s+fun\s+\w+<")
_PRICE_SOURCE   = re.compile(r"(token_a\s*/\s*token_b|token_b\s*/\s*token_a|liquidity_ratio|price)")
_CONST_DIVISION = re.compile(r"/\s*\d+")
_COIN_OP        = re.compile(r"coin::(deposit|withdraw)")
_GLOBAL_VECTOR  = re.compile(r"struct\s+\w+\s+has\s+key\s*\{[^}]*vector<")
_VALUE_MOVEMENT = re.compile(r"withdraw|deposit|transfer")

GUARD_MARKER = "assert!"
OPTION_EXTRACT = "option::extract"
OPTION_BORROW = "option::borrow"

REENTRANCY_WINDOW = 4    # lines after the external call
OWNER_LOOKBEHIND = 10    # owner search starts this many lines before the change
OWNER_WINDOW = 20        # ... and spans this many lines


@dataclass(frozen=True)
class Detector:
    key: str
    title: str
    severity: Severity
    description: str
    recommendation: str
    scan: LineScanner = field(repr=False, compare=False)
    experimental: bool = False

    def findings(self, lines: Sequence[str], path: str = "<input>") -> List[Finding]:
        return [
            Finding(
                severity=self.severity,
                title=self.title,
                description=self.description,
                location=Location(file=path, line=ln, column=0),
                recommendation=self.recommendation,
            )
            for ln in self.scan(lines)
        ]

    def check(self, code: str, path: str = "<input>") -> List[Finding]:
        return self.findings(split_lines(code), path)


# ---------- Line scanners ----------

def _scan_reentrancy(lines: Sequence[str]) -> List[int]:
    out: List[int] = []
    for i, line in enumerate(lines):
        if not _EXTERNAL_CALL.search(line):
            continue
        for j in range(i + 1, min(i + 1 + REENTRANCY_WINDOW, len(lines))):
            if _STATE_CHANGE.search(lines[j]):
                out.append(i + 1)
                break
    return out


def _unguarded(pattern: re.Pattern) -> LineScanner:
    def scan(lines: Sequence[str]) -> List[int]:
        return [i + 1 for i, line in enumerate(lines)
                if pattern.search(line) and GUARD_MARKER not in line]
    return scan


def _heuristic(pattern: re.Pattern, any_of: Tuple[str, ...] = (), none_of: Tuple[str, ...] = ()) -> LineScanner:
    """Trigger pattern, optionally requiring one of `any_of` and none of `none_of` on the same line."""
    def scan(lines: Sequence[str]) -> List[int]:
        out: List[int] = []
        for i, line in enumerate(lines):
            if not pattern.search(line):
                continue
            if any_of and not any(k in line for k in any_of):
                continue
            if any(k in line for k in none_of):
                continue
            out.append(i + 1)
        return out
    return scan


def _scan_option_misuse(lines: Sequence[str]) -> List[int]:
    out: List[int] = []
    extracted = False
    for i, line in enumerate(lines):
        if OPTION_EXTRACT in line:
            extracted = True
        if extracted and OPTION_BORROW in line:
            out.append(i + 1)
            extracted = False
    return out


def _has_owner_check(lines: Sequence[str], idx: int) -> bool:
    start = max(0, idx - OWNER_LOOKBEHIND)
    return any(_OWNER_CHECK.search(l) for l in lines[start:start + OWNER_WINDOW])


def _scan_access_control(lines: Sequence[str]) -> List[int]:
    flagged = suppressed_lines(lines)
    out: List[int] = []
    for i, line in enumerate(lines):
        if not _STATE_CHANGE.search(line):
            continue
        if (i + 1) in flagged:
            continue
        if not _has_owner_check(lines, i):
            out.append(i + 1)
    return out


# ---------- Detector catalogue ----------

REENTRANCY = Detector(
    key="reentrancy",
    title="Reentrancy Vulnerability",
    severity=Severity.CRITICAL,
    description=(
        "Potential reentrancy vulnerability detected: External call followed by state change. "
        "This pattern could allow an attacker to re-enter the function before the state is updated, "
        "potentially leading to multiple withdrawals or unauthorized state modifications."
    ),
    recommendation=(
        "Implement the checks-effects-interactions pattern: 1) Validate all conditions first, "
        "2) Update state variables, 3) Make external calls last. Consider using a reentrancy guard "
        "or implementing the nonReentrant modifier pattern."
    ),
    scan=_scan_reentrancy,
)

INTEGER_OVERFLOW = Detector(
    key="integer-overflow",
    title="Integer Overflow Vulnerability",
    severity=Severity.HIGH,
    description=(
        "Potential integer overflow detected: Arithmetic operation without overflow check. "
        "This could lead to unexpected behavior where values wrap around, potentially causing "
        "financial loss or incorrect calculations."
    ),
    recommendation=(
        "Add overflow checks using assert! or use safe math operations. Consider implementing a "
        "safe math library that handles overflow/underflow cases explicitly."
    ),
    scan=_unguarded(_ADDITION),
)

UNCHECKED_ARITHMETIC = Detector(
    key="unchecked-arithmetic",
    title="Unchecked Arithmetic Vulnerability",
    severity=Severity.HIGH,
    description=(
        "Potential unchecked arithmetic detected: Subtraction without underflow check. "
        "This could lead to unexpected behavior where values wrap around, potentially causing "
        "financial loss or incorrect calculations."
    ),
    recommendation=(
        "Add underflow checks using assert! or use safe math operations. Consider implementing a "
        "safe math library that handles overflow/underflow cases explicitly."
    ),
    scan=_unguarded(_SUBTRACTION),
)

MISSING_ERROR_HANDLING = Detector(
    key="missing-error-handling",
    title="Missing Error Handling Vulnerability",
    severity=Severity.HIGH,
    description=(
        "Missing error handling detected: Division without zero check. This could lead to a "
        "runtime error if the divisor is zero, potentially causing the entire transaction to fail "
        "or unexpected behavior."
    ),
    recommendation=(
        "Add zero checks using assert! before division. Consider implementing proper error "
        "handling with custom error types and clear error messages."
    ),
    scan=_unguarded(_DIVISION),
)

ACCESS_CONTROL = Detector(
    key="access-control",
    title="Access Control Vulnerability",
    severity=Severity.HIGH,
    description=(
        "Missing access control detected: State modification without owner check. This could "
        "allow unauthorized users to modify critical contract state, potentially leading to "
        "unauthorized access or fund theft."
    ),
    recommendation=(
        "Implement proper access control: 1) Add owner checks before state modifications, "
        "2) Use role-based access control where appropriate, 3) Consider implementing a "
        "multi-signature requirement for critical operations."
    ),
    scan=_scan_access_control,
)

UNBOUNDED_EXECUTION = Detector(
    key="unbounded-execution",
    title="Unbounded Execution Vulnerability",
    severity=Severity.HIGH,
    description=(
        "Potential unbounded execution: Loop condition may be user-controlled or unbounded, "
        "leading to denial-of-service via gas exhaustion."
    ),
    recommendation=(
        "Limit loop iterations, use data structures that prevent unbounded growth, or add "
        "explicit iteration caps."
    ),
    scan=_heuristic(_WHILE_LOOP, any_of=("vector::length", "len", "user", "input")),
    experimental=True,
)

GENERICS_TYPE_CHECK = Detector(
    key="generics-type-check",
    title="Lack of Generics Type Checking Vulnerability",
    severity=Severity.CRITICAL,
    description=(
        "Public function with generic type parameter does not check type validity. This can "
        "allow attackers to exploit type mismatches and drain assets."
    ),
    recommendation=(
        "Add type checks/assertions to ensure the generic type matches the expected or "
        "whitelisted type."
    ),
    scan=_heuristic(_GENERIC_FN, none_of=("type_of", GUARD_MARKER)),
    experimental=True,
)

PRICE_ORACLE_MANIPULATION = Detector(
    key="price-oracle-manipulation",
    title="Price Oracle Manipulation Vulnerability",
    severity=Severity.CRITICAL,
    description=(
        "Potential price oracle manipulation: Price is calculated from on-chain ratios or "
        "manipulable sources without external validation."
    ),
    recommendation=(
        "Use time-weighted or external oracles, and validate price sources to prevent manipulation."
    ),
    scan=_heuristic(_PRICE_SOURCE, none_of=("oracle",)),
    experimental=True,
)

ARITHMETIC_PRECISION = Detector(
    key="arithmetic-precision",
    title="Arithmetic Precision Error Vulnerability",
    severity=Severity.MEDIUM,
    description=(
        "Potential arithmetic precision error: Division or multiplication may cause rounding "
        "errors, allowing users to bypass fees or receive incorrect payouts."
    ),
    recommendation="Require minimum amounts or ensure nonzero results after division/multiplication.",
    scan=_heuristic(_CONST_DIVISION, any_of=("fee", "amount", "size")),
    experimental=True,
)

ACCOUNT_REGISTRATION = Detector(
    key="account-registration",
    title="Lack of Account Registration Check Vulnerability",
    severity=Severity.MEDIUM,
    description=(
        "Potential lack of account registration check: Coin operations performed without "
        "checking or registering the account, which can cause failed transactions or stuck funds."
    ),
    recommendation="Always check and register accounts before coin operations.",
    scan=_heuristic(_COIN_OP, none_of=("is_account_registered", "register")),
    experimental=True,
)

RESOURCE_MANAGEMENT = Detector(
    key="resource-management",
    title="Improper Resource Management Vulnerability",
    severity=Severity.LOW,
    description=(
        "Improper resource management: Resources are stored globally instead of in user "
        "accounts, leading to ambiguous ownership and potential DoS."
    ),
    recommendation="Store resources in user accounts whenever possible.",
    scan=_heuristic(_GLOBAL_VECTOR),
    experimental=True,
)

BUSINESS_LOGIC_FLAW = Detector(
    key="business-logic-flaw",
    title="Business Logic Flaw Vulnerability",
    severity=Severity.HIGH,
    description=(
        "Potential business logic flaw: Function may allow repeated actions (e.g., double "
        "withdrawal) or lacks invariant checks, leading to loss of funds or protocol failure."
    ),
    recommendation=(
        "Carefully review and test all business logic paths, and enforce invariants with assertions."
    ),
    scan=_heuristic(_VALUE_MOVEMENT, none_of=(GUARD_MARKER,)),
    experimental=True,
)

INCORRECT_STD_FUNCTION = Detector(
    key="incorrect-std-function",
    title="Incorrect Standard Function Usage Vulnerability",
    severity=Severity.MEDIUM,
    description=(
        "Incorrect use of standard library function: Borrowing from an Option after extracting "
        "its value can cause runtime aborts and unexpected failures."
    ),
    recommendation="Use each stdlib function as intended and add tests for edge cases.",
    scan=_scan_option_misuse,
    experimental=True,
)

# Lines flagged by these are never re-reported by the access-control detector.
SUPPRESSING_DETECTORS: Tuple[Detector, ...] = (
    REENTRANCY,
    INTEGER_OVERFLOW,
    UNCHECKED_ARITHMETIC,
    MISSING_ERROR_HANDLING,
)


def suppressed_lines(lines: Sequence[str]) -> Set[int]:
    flagged: Set[int] = set()
    for det in SUPPRESSING_DETECTORS:
        flagged.update(det.scan(lines))
    return flagged

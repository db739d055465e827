"""Classification of cargo's stderr output.

Cargo mixes rustc diagnostics with build-system chatter (echoed commands,
"Running"/"Fresh" progress lines, error-chain continuations). Dropping the
chatter gives a diagnostic set that does not depend on cache state or
verbosity.
"""

from typing import List

_NOISE_PREFIXES = (
    "+ ",
    "Caused by:",
    "  process didn't exit successfully: ",
)

_NOISE_FRAGMENTS = (
    "Running",
    "Fresh",
)


def is_signal(line: str) -> bool:
    """Return True if the stderr line is a real diagnostic rather than noise."""
    if line.startswith(_NOISE_PREFIXES):
        return False
    return not any(fragment in line for fragment in _NOISE_FRAGMENTS)


def filter_diagnostics(stderr: str) -> List[str]:
    """Split captured stderr into ordered diagnostic lines.

    Leading and trailing newlines are stripped before splitting; blank lines
    inside the output are kept since rustc uses them to separate messages.

    Args:
        stderr: Full stderr text of a failed cargo run

    Returns:
        Signal lines in their original order
    """
    return [line for line in stderr.strip("\n").split("\n") if is_signal(line)]

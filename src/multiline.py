"""
Multiline reassembly of syslog output for a single application.
"""

from typing import Callable

import regex

# Matches the start of a log message from any process. Tries to strike a
# balance between false positives and false negatives.
ANY_LINE_PATTERN = regex.compile(r'\w+(\([^)]*\))?\[\d+\] <[A-Za-z]+>: ')


def runner_line_pattern(app_name: str):
    """Build the header pattern for lines logged by `app_name`.

    iOS 9 format:  Runner[297] <Notice>:
    iOS 10 format: Runner(Flutter)[297] <Notice>:
    """
    return regex.compile(r'(?<!\w)' + regex.escape(app_name) + r'(\(Flutter\))?\[[\d]+\] <[A-Za-z]+>: ')


class MultilineReassembler:
    """Stateful line handler that keeps multiline messages together.

    For multiline log messages, any line after the first is logged without a
    prefix. After matching a header from the tracked app the handler enters
    printing mode and forwards every line until the start of another log
    message (from any app) is found.
    """

    def __init__(self, runner_pattern, emit: Callable[[str], None]):
        self.runner_pattern = runner_pattern
        self.emit = emit
        self.printing = False

    def handle(self, line: str) -> None:
        if self.printing:
            if not ANY_LINE_PATTERN.search(line):
                self.emit(line)
                return
            self.printing = False

        match = self.runner_pattern.search(line)
        if match is not None:
            # Only keep the text after the device and executable information.
            self.emit(line[match.end():])
            self.printing = True

    def __call__(self, line: str) -> None:
        self.handle(line)

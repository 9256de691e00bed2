#!/usr/bin/env python3
"""
Tests for decoding vis-encoded syslog lines.
"""

import sys
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from vis_decoder import decode_syslog


def test_plain_line_is_unchanged():
    line = 'Runner(Flutter)[297] <Notice>: flutter: hello'
    assert decode_syslog(line) == line
    assert decode_syslog('') == ''


def test_decodes_meta_and_control_forms():
    assert decode_syslog(r'I \M-b\M^]\M-$\M-o\M-8\M^O Flutter') == 'I \u2764\ufe0f Flutter'
    assert decode_syslog(r'caf\M-C\M-)') == 'café'


def test_decodes_octal_backslash():
    assert decode_syslog(r'path\134file') == 'path\\file'


def test_backslash_near_end_is_copied():
    assert decode_syslog('abc\\') == 'abc\\'
    assert decode_syslog('ab\\M-') == 'ab\\M-'


def test_unknown_escape_is_copied():
    assert decode_syslog(r'\xyz tail') == r'\xyz tail'
    assert decode_syslog(r'a \q12 b') == r'a \q12 b'


def test_invalid_utf8_returns_input():
    # A lone 0xa0 is not valid UTF-8.
    assert decode_syslog(r'nbsp\240') == r'nbsp\240'


def test_decoding_is_repeatable():
    line = r'I \M-b\M^]\M-$\M-o\M-8\M^O Flutter'
    assert decode_syslog(line) == decode_syslog(line)

import pytest

from cryptoscope.core.positions import LineIndex, build_line_starts, offsets_to_lines


def test_line_mapping_example():
    text = "SHA256\nAES\n"
    assert offsets_to_lines(text, [0]) == [1]
    assert offsets_to_lines(text, [7]) == [2]
    assert offsets_to_lines(text, [7, 0, 8]) == [1, 2]


def test_line_starts_str_and_bytes_agree():
    text = "a\nbb\n\nccc"
    assert build_line_starts(text) == [0, 2, 5, 6]
    assert build_line_starts(text.encode()) == [0, 2, 5, 6]


def test_empty_text_has_no_lines():
    assert build_line_starts("") == []
    assert offsets_to_lines("", [0, 3]) == []
    assert LineIndex(b"").line_of(0) == 0


@pytest.mark.parametrize(
    "offset,line",
    [
        (0, 1),  # first char
        (1, 1),  # the newline itself belongs to line 1
        (2, 2),  # exactly at a line start
        (4, 2),
        (5, 3),  # empty line
        (9, 4),  # == len(text)
        (50, 4),  # past the end clamps
        (-3, 1),
    ],
)
def test_line_of_boundaries(offset, line):
    idx = LineIndex("a\nbb\n\nccc")
    assert idx.line_of(offset) == line


def test_trailing_newline_end_offset():
    text = "x = 1\n"
    # offset == len(text) sits after the final newline
    assert LineIndex(text).line_of(len(text)) == 2


def test_lines_are_distinct_and_sorted():
    text = "md5 md5\nsha1\nmd5\n"
    assert offsets_to_lines(text, [13, 4, 0, 8]) == [1, 2, 3]

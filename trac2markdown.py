'''
Copyright © 2022 Matthias Koeppe

This software is free software: you can redistribute it and/or modify
it under the terms of the GNU Lesser General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This sotfware is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
GNU Lesser General Public License for more details.

You should have received a copy of the GNU Lesser General Public License
along with this library. If not, see <http://www.gnu.org/licenses/>.
'''

"""
Conversion of Trac WikiFormatting into GitLab Flavored Markdown.

Only the subset of the wiki syntax that commonly shows up in ticket
descriptions and comments is handled: code, headings, lists, rules,
tables, emphasis, external links, images and references to tickets,
changesets and reports.
"""

import re
from enum import Enum

FENCE = '```'

RE_INLINE_CODE = re.compile(r'{{{(.*?)}}}')
RE_CODE_BLOCK = re.compile(r'(?s){{{\n(?:#!(.+?)\n)?(.*?)\n}}}')
RE_FENCED_BLOCK = re.compile(r'(?ms)^```.*?^```[^\n]*$')
RE_UNCLOSED_FENCE = re.compile(r'(?m)^```')

RE_HEADINGS = [
    (re.compile(r'(?m)^%s[ \t]+(.*?)([ \t]+%s)?[ \t]*$' % ('=' * level, '=' * level)),
     '#' * level + r' \1')
    for level in range(6, 0, -1)
]

RE_BULLETS = [
    (re.compile(r'(?m)^             \* '), '****'),
    (re.compile(r'(?m)^         \* '), '***'),
    (re.compile(r'(?m)^     \* '), '**'),
    (re.compile(r'(?m)^ \* '), '*'),
    (re.compile(r'(?m)^ \d+\. '), '1. '),
]
RE_RULE = re.compile(r'(?m)^-{4,}$')

RE_CODE_SPAN = re.compile(r'(`[^`\n]*`)')
RE_HTTPS = re.compile(r'\[(https?://[^\s\[\]]+)\s([^\[\]]+)\]')
RE_IMAGE = re.compile(r'\[\[Image\((?!wiki|ticket|htdocs|source)(.+?)\)\]\]')
RE_CAMELCASE_ESCAPE = re.compile(r'!((?:[A-Z][a-z0-9]+){2,})')
RE_BOLDTEXT = re.compile(r"'''([^']*?)'''")
RE_ITALIC1 = re.compile(r"''(.*?)''")
RE_ITALIC2 = re.compile(r'(?P<url>[A-Za-z][A-Za-z0-9+.-]*://\S*)|//(?P<text>.*?)//')

# Macro calls, link targets and bare URLs are matched first so that the
# references below are never rewritten inside them.
RE_REFERENCE = re.compile(
    r'(?P<macro>\[\[[^\]]*\]\])'
    r'|(?P<target>\]\([^)\s]*\))'
    r'|(?P<url>https?://\S+)'
    r'|#(?P<ticket>\d+)\b'
    r'|\bticket:(?P<ticket_long>\d+)\b'
    r'|\[(?P<changeset>\d+)\]'
    r'|\bchangeset:(?P<changeset_long>\d+)\b'
    r'|\br(?P<revision>\d+)\b'
    r'|\{(?P<report>\d+)\}'
    r'|\breport:(?P<report_long>\d+)\b'
)

RE_TABLE_CELL_HEADING = re.compile(r'= (.+?) =')


def _outside_fences(text, convert):
    """
    Apply ``convert`` to the parts of ``text`` that are not fenced code blocks.

    A fence that is never closed runs to the end of the text, as it does
    in the line by line pass.
    """
    parts = []
    start = 0
    for match in RE_FENCED_BLOCK.finditer(text):
        parts.append(convert(text[start:match.start()]))
        parts.append(match.group(0))
        start = match.end()
    rest = text[start:]
    unclosed = RE_UNCLOSED_FENCE.search(rest)
    if unclosed:
        parts.append(convert(rest[:unclosed.start()]))
        parts.append(rest[unclosed.start():])
    else:
        parts.append(convert(rest))
    return ''.join(parts)


def _outside_code_spans(line, convert):
    return ''.join(part if i % 2 else convert(part)
                   for i, part in enumerate(RE_CODE_SPAN.split(line)))


def convert_code(text):
    "Turn ``{{{...}}}`` into inline code spans and fenced code blocks"
    text = RE_INLINE_CODE.sub(r'`\1`', text)
    return RE_CODE_BLOCK.sub(FENCE + r'\1\n\2\n' + FENCE, text)


def convert_blocks(text):
    "Headings, bullet points and horizontal rules"
    for regex, replacement in RE_HEADINGS:
        text = regex.sub(replacement, text)
    for regex, replacement in RE_BULLETS:
        text = regex.sub(replacement, text)
    return RE_RULE.sub(r'\n\g<0>', text)


def reference_link(match, base_url):
    """
    Return the Markdown link for a ticket, changeset or report reference.
    """
    kind = match.lastgroup
    if kind in ('macro', 'target', 'url'):
        return match.group(0)
    number = match.group(kind)
    text = match.group(0)
    if kind.startswith('ticket'):
        path = 'ticket'
    elif kind in ('changeset', 'changeset_long', 'revision'):
        path = 'changeset'
    else:
        path = 'report'
    return '[%s](%s/%s/%s)' % (text, base_url, path, number)


def _italic(match):
    if match.group('url'):
        return match.group(0)
    return '_%s_' % match.group('text')


def convert_inline(text, base_url):
    "Links, images and emphasis within a single line of text"
    text = RE_HTTPS.sub(r'[\2](\1)', text)
    text = RE_IMAGE.sub(r'![image](\1)', text)
    text = RE_CAMELCASE_ESCAPE.sub(r'\1', text)
    text = RE_BOLDTEXT.sub(r'**\1**', text)
    text = RE_ITALIC1.sub(r'_\1_', text)
    text = RE_ITALIC2.sub(_italic, text)
    return RE_REFERENCE.sub(lambda m: reference_link(m, base_url), text)


class CodeState(Enum):
    TEXT = 'text'
    CODE = 'code'

    def toggled(self):
        return CodeState.TEXT if self is CodeState.CODE else CodeState.CODE


class TableState(Enum):
    OUTSIDE = 'outside'
    INSIDE = 'inside'


class LineConverter:
    """
    The line-by-line pass of the conversion.

    Tracks whether the current line is inside a fenced code block and
    whether it continues a table, and converts one line at a time, so a
    sequence of lines can be fed and inspected individually.
    """

    def __init__(self, base_url):
        self.base_url = base_url
        self.code = CodeState.TEXT
        self.table = TableState.OUTSIDE

    def convert(self, line):
        if line.startswith(FENCE):
            self.code = self.code.toggled()
            self.table = TableState.OUTSIDE
            return line
        if self.code is CodeState.CODE:
            return line

        line = _outside_code_spans(line, lambda part: convert_inline(part, self.base_url))

        if not line.startswith('||'):
            self.table = TableState.OUTSIDE
            return line

        if self.table is TableState.OUTSIDE:
            # GitLab needs a blank line before a table and a separator
            # line below its first row
            separator = re.sub(r'[^|]', '-', line)
            line = '\n%s\n%s' % (line, separator)
            self.table = TableState.INSIDE
        # |cell| works in WikiFormatting but not in GFM
        line = line.replace('||', '| ')
        return RE_TABLE_CELL_HEADING.sub(r'**\1**', line)


def translate(text, base_url):
    """
    Convert Trac WikiFormatting into GitLab Flavored Markdown.

    ``base_url`` is the URL of the Trac instance; references to tickets,
    changesets and reports become absolute links below it.
    """
    if not text:
        return ''
    base_url = base_url.rstrip('/')
    text = text.replace('\r\n', '\n')
    text = convert_code(text)
    text = _outside_fences(text, convert_blocks)

    converter = LineConverter(base_url)
    return '\n'.join(converter.convert(line) for line in text.split('\n'))
